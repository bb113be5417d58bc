"""
Entitlement Router - access decision endpoint used by page controllers
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.utils.responses import success_response, error_response
from config.settings import SOURCE_TRIAL
from routers.dependencies import get_access_controller, get_store
from services.dual_store import DualStore
from services.entitlement_service import AccessCheckController, EntitlementResolver, PHASE_TIMED_OUT
from services.trial_service import should_show_trial_banner, trial_expiration_message

logger = logging.getLogger(__name__)

entitlement_router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@entitlement_router.get("/{user_id}")
async def get_entitlement(
    user_id: str,
    account_created_at: Optional[datetime] = Query(default=None),
    timeout: Optional[float] = Query(default=None, gt=0),
    store: DualStore = Depends(get_store),
    controller: AccessCheckController = Depends(get_access_controller),
):
    """
    Resolve whether a user may access paid content right now.

    Args:
        user_id: User to check
        account_created_at: Signup time (ISO 8601, UTC when no offset), used for trial eligibility
        timeout: Optional limit in seconds; expiry is reported, not denied

    Returns:
        JSON response with phase, has_access, source and trial banner fields
    """
    state = await controller.check(EntitlementResolver(store), user_id, account_created_at, timeout=timeout)

    if state.phase == PHASE_TIMED_OUT:
        return error_response(
            "ENTITLEMENT_TIMEOUT",
            status=503,
            message="Still checking access. Try again shortly.",
            data={"phase": state.phase, "user_id": user_id},
        )

    entitlement = state.entitlement
    data = {"phase": state.phase, "user_id": user_id, **entitlement.model_dump()}
    if entitlement.source == SOURCE_TRIAL:
        days = entitlement.days_remaining_if_trial or 0
        data["trial_message"] = trial_expiration_message(days)
        data["show_trial_banner"] = should_show_trial_banner(days)
    return success_response(data)
