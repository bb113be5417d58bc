"""
Subscription Service - decides whether a user's subscription is actually active
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import (
    READ_SOURCE_CACHE,
    READ_SOURCE_NONE,
    READ_SOURCE_REMOTE,
    STATUS_ACTIVE,
    settings,
)
from models.entitlement import PaymentCallback, SubscriptionRecord, SubscriptionResolution
from services.dual_store import (
    DualStore,
    SUBSCRIPTIONS,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_META,
    cache_key,
    flag_to_str,
    parse_cached_flag,
    record_to_json,
)
from utils.errors import DataUnavailable, InconsistentCache, InvalidState, RemoteStoreError
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def is_actually_active(record: Optional[SubscriptionRecord], now: datetime) -> bool:
    """
    A subscription is active iff its status is active and either no
    cancellation is pending or the paid period has not lapsed yet.
    """
    if record is None or record.status != STATUS_ACTIVE:
        return False
    if not record.cancel_at_period_end:
        return True
    if record.end_date is not None and now < record.end_date:
        return True
    if record.next_billing_date is not None and now < record.next_billing_date:
        return True
    return False


class SubscriptionStatusResolver:
    """
    Resolves subscription state from the remote store, falling back to the
    cached subscription-active flag.
    """

    def __init__(self, store: DualStore, clock: Callable[[], datetime] = utc_now):
        """
        Args:
            store: DualStore over the request's database session and cache
            clock: Returns the current aware UTC time
        """
        self.store = store
        self.clock = clock

    def _flag_key(self, user_id: str) -> str:
        return cache_key(user_id, SUBSCRIPTION_ACTIVE)

    def _meta_key(self, user_id: str) -> str:
        return cache_key(user_id, SUBSCRIPTION_META)

    def _sync_cache(self, user_id: str, active: bool, record: Optional[SubscriptionRecord]) -> None:
        self.store.write_cache(self._flag_key(user_id), flag_to_str(active))
        if record is not None:
            self.store.write_cache(self._meta_key(user_id), record_to_json(record))
        else:
            self.store.clear_cache(self._meta_key(user_id))

    async def resolve(self, user_id: str) -> SubscriptionResolution:
        """
        Determine whether the user has an active subscription.

        Args:
            user_id: User to check

        Returns:
            SubscriptionResolution; record is only present for remote answers
        """
        try:
            record = await self.store.read_remote(SUBSCRIPTIONS, user_id)
        except RemoteStoreError as e:
            level = logging.INFO if isinstance(e, DataUnavailable) else logging.WARNING
            logger.log(level, f"Subscription lookup for {user_id} fell back to cache: {e.message}")
            return self._resolve_from_cache(user_id)

        active = is_actually_active(record, self.clock())
        self._sync_cache(user_id, active, record)
        return SubscriptionResolution(active=active, record=record, source=READ_SOURCE_REMOTE)

    def _resolve_from_cache(self, user_id: str) -> SubscriptionResolution:
        key = self._flag_key(user_id)
        try:
            flag = parse_cached_flag(self.store.read_cache(key))
        except InconsistentCache as e:
            logger.warning(f"Discarding cache entry {key}: {e.message}")
            self.store.clear_cache(key)
            flag = None
        if flag is None:
            return SubscriptionResolution(active=False, source=READ_SOURCE_NONE)
        return SubscriptionResolution(active=flag, source=READ_SOURCE_CACHE)

    async def record_payment_success(self, callback: PaymentCallback) -> Optional[SubscriptionRecord]:
        """
        Create (or confirm) the subscription for a successful payment.

        The cache flag is set first so access opens immediately, even if the
        remote write below does not land.

        Returns:
            The created record, or None for failed payments
        """
        if not callback.success:
            logger.info(f"Payment {callback.reference} for user {callback.user_id} failed; no subscription created")
            return None

        now = self.clock()
        record = SubscriptionRecord(
            user_id=callback.user_id,
            status=STATUS_ACTIVE,
            cancel_at_period_end=False,
            end_date=None,
            next_billing_date=now + timedelta(days=settings.billing_period_days),
            plan_name=callback.plan_name or settings.default_plan_name,
            amount=callback.amount,
            currency=callback.currency or settings.default_currency,
            reference=callback.reference,
            created_at=now,
        )
        self._sync_cache(callback.user_id, True, record)

        written = await self.store.write_remote_best_effort(
            SUBSCRIPTIONS, callback.user_id, record.model_dump(exclude={"user_id"})
        )
        if written is None:
            logger.warning(f"Subscription for {callback.user_id} only cached; remote write did not land")
            return record
        logger.info(f"✅ Subscription created for user {callback.user_id} (ref {callback.reference})")
        return written

    async def cancel(self, user_id: str) -> SubscriptionRecord:
        """
        Request cancellation at period end. Access continues until the paid
        period lapses.

        Raises:
            InvalidState: no active subscription found to cancel
        """
        resolution = await self.resolve(user_id)
        record = resolution.record
        if record is None or not resolution.active:
            raise InvalidState("No active subscription to cancel", user_id=user_id)
        if record.cancel_at_period_end:
            return record

        now = self.clock()
        updates = {
            "cancel_at_period_end": True,
            "end_date": record.next_billing_date or record.end_date or now,
        }
        updated = record.model_copy(update=updates)
        written = await self.store.write_remote_best_effort(SUBSCRIPTIONS, user_id, updates)
        updated = written or updated

        self._sync_cache(user_id, is_actually_active(updated, now), updated)
        logger.info(f"Subscription for user {user_id} set to cancel at {updates['end_date'].isoformat()}")
        return updated
