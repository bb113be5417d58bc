from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from config.settings import READ_SOURCE_NONE, SOURCE_NONE, STATUS_ACTIVE
from utils.time_utils import ensure_utc


class TrialRecord(BaseModel):
    """
    Stored trial window. days_remaining / is_expired are derived by
    TrialLifecycleManager and never stored.
    """
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    total_days: int = 7

    @field_validator("start_date", "end_date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class TrialStatus(TrialRecord):
    days_remaining: int
    is_expired: bool


class SubscriptionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    status: str = STATUS_ACTIVE
    cancel_at_period_end: bool = False
    end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    plan_name: str
    amount: int = 0
    currency: str
    reference: Optional[str] = None
    created_at: datetime

    @field_validator("end_date", "next_billing_date", "created_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class PaymentCallback(BaseModel):
    """Success/failure notification delivered by the payment gateway."""
    user_id: str
    reference: str
    amount: int
    currency: Optional[str] = None
    success: bool = True
    plan_name: Optional[str] = None


@dataclass
class SubscriptionResolution:
    active: bool
    record: Optional[SubscriptionRecord] = None
    source: str = READ_SOURCE_NONE


class EntitlementStatus(BaseModel):
    has_access: bool
    source: str = SOURCE_NONE
    days_remaining_if_trial: Optional[int] = None


class ExtendTrialRequest(BaseModel):
    """Request model for admin trial extension"""
    days: int


class CancelSubscriptionRequest(BaseModel):
    """Request model for cancel-at-period-end"""
    user_id: str
    reason: Optional[str] = None
