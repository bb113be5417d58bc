"""
Trial Service for managing the one-time free trial window
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from config.settings import settings
from models.entitlement import TrialRecord, TrialStatus
from services.dual_store import (
    DualStore,
    TRIALS,
    TRIAL_STATUS,
    cache_key,
    parse_cached_record,
    record_to_json,
)
from utils.errors import InvalidState
from utils.time_utils import (
    add_calendar_days,
    ceil_days,
    end_of_day,
    ensure_utc,
    floor_days,
    same_calendar_day,
    start_of_day,
    utc_now,
)

logger = logging.getLogger(__name__)


def trial_window(anchor: datetime, total_days: int) -> tuple:
    """
    Compute (start_date, end_date) for a trial anchored at anchor.

    start_date is 00:00:00.000 of anchor's day; end_date is 23:59:59.999 of
    the day total_days later.
    """
    start = start_of_day(anchor)
    end = end_of_day(add_calendar_days(start, total_days))
    return start, end


def compute_days_remaining(record: TrialRecord, now: datetime) -> int:
    """
    Whole days left in the trial.

    - On the trial's first calendar day the full total_days is returned,
      however many hours have passed since midnight.
    - Otherwise floor((end_date - now) / 1 day), clamped at 0.
    - A trial that has not expired yet never reports 0; its final partial
      day counts as 1.
    """
    if now > record.end_date:
        return 0
    if same_calendar_day(now, record.start_date):
        return record.total_days
    return max(1, floor_days(record.end_date - now))


def is_expired(record: TrialRecord, now: datetime) -> bool:
    return now > record.end_date


def is_eligible(account_created_at: Optional[datetime], now: datetime, total_days: Optional[int] = None) -> bool:
    """
    Whether an account may receive a lazily created trial.

    Eligible iff the signup date is unknown (configurable) or
    ceil((now - account_created_at) / 1 day) <= total_days.
    """
    total_days = settings.trial_duration_days if total_days is None else total_days
    if account_created_at is None:
        return settings.trial_eligible_without_signup_date
    return ceil_days(ensure_utc(now) - ensure_utc(account_created_at)) <= total_days


def trial_expiration_message(days_remaining: int) -> str:
    """User-facing text for the trial banner."""
    if days_remaining <= 0:
        return "Your free trial has expired. Subscribe now to continue learning!"
    if days_remaining == 1:
        return "Your free trial expires tomorrow. Subscribe now to keep learning!"
    if days_remaining <= 3:
        return f"Your free trial expires in {days_remaining} days. Subscribe now to keep learning!"
    return f"You have {days_remaining} days left in your free trial."


def should_show_trial_banner(days_remaining: int) -> bool:
    return 0 < days_remaining <= 3


class TrialLifecycleManager:
    """
    Service for managing user trial periods.
    Creates, reads, extends and terminates the single trial record per user.
    """

    def __init__(self, store: DualStore, clock: Callable[[], datetime] = utc_now, total_days: Optional[int] = None):
        """
        Initialize the trial manager.

        Args:
            store: DualStore over the request's database session and cache
            clock: Returns the current aware UTC time
            total_days: Trial length; defaults to TRIAL_DURATION_DAYS
        """
        self.store = store
        self.clock = clock
        self.total_days = settings.trial_duration_days if total_days is None else total_days

    def _key(self, user_id: str) -> str:
        return cache_key(user_id, TRIAL_STATUS)

    def _with_derived(self, record: TrialRecord) -> TrialStatus:
        now = self.clock()
        return TrialStatus(
            **record.model_dump(),
            days_remaining=compute_days_remaining(record, now),
            is_expired=is_expired(record, now),
        )

    async def _lookup(self, user_id: str) -> Optional[TrialRecord]:
        record, source = await self.store.read_through(
            TRIALS,
            user_id,
            TRIAL_STATUS,
            from_cache=lambda raw: parse_cached_record(raw, TrialRecord),
            to_cache=record_to_json,
        )
        if record is not None:
            logger.debug(f"Trial for {user_id} read from {source}")
        return record

    def _persist_cache(self, record: TrialRecord) -> None:
        self.store.write_cache(self._key(record.user_id), record_to_json(record))

    async def get_status(self, user_id: str) -> Optional[TrialStatus]:
        """
        Current trial for a user, remote first with cache fallback.

        days_remaining / is_expired are recomputed from the stored dates on
        every call.

        Args:
            user_id: User to look up

        Returns:
            TrialStatus, or None if the user never had a trial
        """
        record = await self._lookup(user_id)
        if record is None:
            return None
        return self._with_derived(record)

    async def initialize(self, user_id: str, account_created_at: Optional[datetime] = None) -> TrialStatus:
        """
        Create the user's trial if none exists. Idempotent: an existing
        record is returned unchanged.

        Args:
            user_id: User to start the trial for
            account_created_at: Signup time; the trial starts on that day
                (today when unknown)

        Returns:
            The existing or newly created trial
        """
        account_created_at = ensure_utc(account_created_at)
        existing = await self._lookup(user_id)
        if existing is not None:
            return self._with_derived(existing)

        start, end = trial_window(account_created_at or self.clock(), self.total_days)
        record = TrialRecord(
            user_id=user_id,
            start_date=start,
            end_date=end,
            is_active=True,
            total_days=self.total_days,
        )

        written = await self.store.write_remote_best_effort(
            TRIALS, user_id, record.model_dump(exclude={"user_id"})
        )
        if written is None:
            logger.info(f"Trial for {user_id} stored in cache only")
        self._persist_cache(record)

        logger.info(f"✅ Trial initialized for user {user_id}: {start.isoformat()} -> {end.isoformat()}")
        return self._with_derived(record)

    async def extend(self, user_id: str, days: int) -> TrialStatus:
        """
        Push the trial's end date out by days (admin use).

        Raises:
            InvalidState: days is not positive, or there is no active,
                unexpired trial to extend
        """
        if days <= 0:
            raise InvalidState(f"Extension must be a positive number of days, got {days}", user_id=user_id)

        current = await self.get_status(user_id)
        if current is None:
            raise InvalidState("No trial to extend", user_id=user_id)
        if not current.is_active or current.is_expired:
            raise InvalidState("Cannot extend an inactive or expired trial", user_id=user_id)

        updated = TrialRecord(
            user_id=user_id,
            start_date=current.start_date,
            end_date=add_calendar_days(current.end_date, days),
            is_active=True,
            total_days=current.total_days + days,
        )

        await self.store.write_remote_best_effort(TRIALS, user_id, updated.model_dump(exclude={"user_id"}))
        self._persist_cache(updated)

        logger.info(f"✅ Trial extended for user {user_id} by {days} days")
        return self._with_derived(updated)

    async def terminate(self, user_id: str) -> None:
        """
        End the trial early (admin use). The record is deactivated, not deleted.
        """
        current = await self._lookup(user_id)
        self.store.clear_cache(self._key(user_id))
        if current is None:
            logger.info(f"No trial to end for user {user_id}")
            return

        # The full record is written so a cache-only trial still lands remotely as inactive
        values = current.model_dump(exclude={"user_id"})
        values.update({"is_active": False, "ended_at": self.clock()})
        written = await self.store.write_remote_best_effort(TRIALS, user_id, values)
        if written is None:
            logger.info(f"Trial for {user_id} ended locally; remote record not updated")
        logger.info(f"✅ Trial ended for user {user_id}")

    def clear_cached(self, user_id: str) -> None:
        """Drop the cached trial mirror without touching the remote record."""
        self.store.clear_cache(self._key(user_id))
