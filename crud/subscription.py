"""
SubscriptionRepository for database operations on the Subscription model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Subscription
from config.settings import STATUS_ACTIVE


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_latest(self, user_id: str) -> Optional[Subscription]:
        """
        Most recent subscription with status=active for a user
        (created_at desc, limit 1).
        """
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == STATUS_ACTIVE)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_by_reference(self, reference: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.reference == reference).limit(1)
        )
        return result.scalars().first()

    async def upsert(self, user_id: str, values: dict) -> Subscription:
        """
        Write a subscription row.

        A row carrying a payment reference that already exists is updated in
        place, so a repeated gateway callback does not create a duplicate.
        Values without a reference update the latest active subscription.
        """
        reference = values.get("reference")
        if reference:
            subscription = await self.get_by_reference(reference)
        else:
            subscription = await self.get_latest(user_id)

        if subscription is None:
            subscription = Subscription(user_id=user_id, **values)
            self.db.add(subscription)
        else:
            for key, value in values.items():
                if hasattr(subscription, key) and key not in ("user_id", "created_at"):
                    setattr(subscription, key, value)

        await self.db.flush()
        await self.db.refresh(subscription)
        return subscription
