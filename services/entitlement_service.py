"""
Entitlement Service - single access decision from subscription and trial state
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from config.settings import SOURCE_NONE, SOURCE_SUBSCRIPTION, SOURCE_TRIAL
from models.entitlement import EntitlementStatus, SubscriptionResolution, TrialStatus
from services.dual_store import DualStore
from services.subscription_service import SubscriptionStatusResolver
from services.trial_service import TrialLifecycleManager, is_eligible
from utils.time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# AccessCheckState phases
PHASE_CHECKING = "checking"
PHASE_ALLOWED = "allowed"
PHASE_DENIED = "denied"
PHASE_TIMED_OUT = "timed_out"


class EntitlementResolver:
    """
    Combines subscription and trial state under strict precedence:
    an active subscription always wins and the trial is not consulted.
    """

    def __init__(
        self,
        store: DualStore,
        clock: Callable[[], datetime] = utc_now,
        subscriptions: Optional[SubscriptionStatusResolver] = None,
        trials: Optional[TrialLifecycleManager] = None,
    ):
        self.clock = clock
        self.subscriptions = subscriptions or SubscriptionStatusResolver(store, clock=clock)
        self.trials = trials or TrialLifecycleManager(store, clock=clock)

    async def get_entitlement(self, user_id: str, account_created_at: Optional[datetime] = None) -> EntitlementStatus:
        """
        Resolve whether user_id has access right now.

        Never raises: each failing layer is logged and treated as offering no
        evidence of access, so the result is denied only when no layer could
        confirm access.

        Args:
            user_id: User to check
            account_created_at: Signup time, used for trial eligibility

        Returns:
            EntitlementStatus
        """
        # Signup times without an offset are read as UTC
        account_created_at = ensure_utc(account_created_at)

        try:
            subscription = await self.subscriptions.resolve(user_id)
        except Exception as e:
            logger.error(f"Subscription resolution failed for {user_id}: {e}", exc_info=True)
            subscription = SubscriptionResolution(active=False)

        if subscription.active:
            # No trial banner for subscribers
            self.trials.clear_cached(user_id)
            return EntitlementStatus(has_access=True, source=SOURCE_SUBSCRIPTION)

        trial = await self._current_trial(user_id, account_created_at)
        if trial is not None and trial.is_active and trial.days_remaining > 0:
            return EntitlementStatus(
                has_access=True,
                source=SOURCE_TRIAL,
                days_remaining_if_trial=trial.days_remaining,
            )
        return EntitlementStatus(has_access=False, source=SOURCE_NONE)

    async def _current_trial(self, user_id: str, account_created_at: Optional[datetime]) -> Optional[TrialStatus]:
        try:
            trial = await self.trials.get_status(user_id)
            if trial is not None:
                return trial
            if not is_eligible(account_created_at, self.clock(), self.trials.total_days):
                logger.info(f"User {user_id} is not eligible for a trial")
                return None
            return await self.trials.initialize(user_id, account_created_at)
        except Exception as e:
            logger.error(f"Trial resolution failed for {user_id}: {e}", exc_info=True)
            return None


@dataclass
class AccessCheckState:
    """
    Per-request view of an access check, owned by the calling controller.
    entitlement stays None while checking and after a timeout.
    """
    user_id: str
    phase: str = PHASE_CHECKING
    entitlement: Optional[EntitlementStatus] = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def has_access(self) -> Optional[bool]:
        return None if self.entitlement is None else self.entitlement.has_access


class AccessCheckController:
    """
    Runs entitlement checks for a controller instance.

    Concurrent checks for the same user share one in-flight task. The map
    is per controller; nothing is shared across instances or processes.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    def is_checking(self, user_id: str) -> bool:
        return user_id in self._in_flight

    def _start(self, resolver: EntitlementResolver, user_id: str, account_created_at: Optional[datetime]) -> asyncio.Task:
        task = self._in_flight.get(user_id)
        if task is not None:
            logger.debug(f"Joining in-flight access check for {user_id}")
            return task

        task = asyncio.ensure_future(resolver.get_entitlement(user_id, account_created_at))
        self._in_flight[user_id] = task

        def _done(finished: asyncio.Task) -> None:
            if self._in_flight.get(user_id) is finished:
                del self._in_flight[user_id]

        task.add_done_callback(_done)
        return task

    async def check(
        self,
        resolver: EntitlementResolver,
        user_id: str,
        account_created_at: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> AccessCheckState:
        """
        Resolve access for user_id, joining any check already running.

        Args:
            resolver: Resolver bound to the caller's store
            user_id: User to check
            account_created_at: Signup time, used for trial eligibility
            timeout: Optional caller-imposed limit in seconds. Expiry yields
                phase "timed_out", never an implicit denial.

        Returns:
            AccessCheckState in a terminal phase
        """
        state = AccessCheckState(user_id=user_id)
        task = self._start(resolver, user_id, account_created_at)
        try:
            if timeout is None:
                entitlement = await asyncio.shield(task)
            else:
                entitlement = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Access check for {user_id} timed out after {timeout}s")
            state.phase = PHASE_TIMED_OUT
            state.finished_at = utc_now()
            return state

        state.entitlement = entitlement
        state.phase = PHASE_ALLOWED if entitlement.has_access else PHASE_DENIED
        state.finished_at = utc_now()
        return state
