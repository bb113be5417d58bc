"""
Trial Router - trial status and admin extend / terminate endpoints
"""

import logging

from fastapi import APIRouter, Depends

from backend.utils.responses import success_response, error_response
from models.entitlement import ExtendTrialRequest
from routers.dependencies import get_store, require_admin
from services.dual_store import DualStore
from services.trial_service import TrialLifecycleManager, should_show_trial_banner, trial_expiration_message
from utils.errors import InvalidState

logger = logging.getLogger(__name__)

trial_router = APIRouter(prefix="/api/trials", tags=["trials"])


@trial_router.get("/{user_id}")
async def get_trial(user_id: str, store: DualStore = Depends(get_store)):
    """Current trial with freshly computed days remaining."""
    trial = await TrialLifecycleManager(store).get_status(user_id)
    if trial is None:
        return error_response("TRIAL_NOT_FOUND", status=404, message="No trial for this user")

    data = trial.model_dump()
    data["message"] = trial_expiration_message(trial.days_remaining)
    data["show_banner"] = should_show_trial_banner(trial.days_remaining)
    return success_response(data)


@trial_router.post("/{user_id}/extend", dependencies=[Depends(require_admin)])
async def extend_trial(user_id: str, body: ExtendTrialRequest, store: DualStore = Depends(get_store)):
    """
    Extend an active trial by body.days (admin only).

    Returns 409 when the trial is missing, inactive or expired.
    """
    try:
        trial = await TrialLifecycleManager(store).extend(user_id, body.days)
    except InvalidState as e:
        logger.info(f"Trial extension rejected for {user_id}: {e.message}")
        return error_response("INVALID_STATE", status=409, message=e.message)
    return success_response(trial.model_dump(), message="Trial extended")


@trial_router.post("/{user_id}/terminate", dependencies=[Depends(require_admin)])
async def terminate_trial(user_id: str, store: DualStore = Depends(get_store)):
    """End a trial early (admin only)."""
    await TrialLifecycleManager(store).terminate(user_id)
    return success_response({"user_id": user_id, "is_active": False}, message="Trial ended")
