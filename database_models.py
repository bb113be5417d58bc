from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from datetime import datetime, timezone
from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Trial(Base):
    """
    Free trial window for a user.
    Rows are never deleted; terminating a trial only clears is_active.
    """
    __tablename__ = "trials"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    total_days = Column(Integer, default=7, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)


class Subscription(Base):
    """
    Paid subscription created by the payment-success callback.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status_created", "user_id", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    status = Column(String, default="active", nullable=False)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    next_billing_date = Column(DateTime(timezone=True), nullable=True)
    plan_name = Column(String, nullable=False)
    amount = Column(Integer, default=0, nullable=False)  # minor currency units
    currency = Column(String, nullable=False)
    reference = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
