"""
TrialRepository for database operations on the Trial model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Trial


class TrialRepository:
    """
    Repository class for Trial database operations.
    Encapsulates all database logic for the trials table.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_latest(self, user_id: str) -> Optional[Trial]:
        """
        Retrieve the most recent trial for a user, active or not.

        Inactive rows are returned too so a terminated trial is never
        mistaken for "no trial yet" and re-granted.

        Args:
            user_id: Owner of the trial

        Returns:
            Trial object if found, None otherwise
        """
        result = await self.db.execute(
            select(Trial)
            .where(Trial.user_id == user_id)
            .order_by(Trial.created_at.desc(), Trial.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def create_trial(self, trial_data: dict) -> Trial:
        """
        Create a new trial row.

        Args:
            trial_data: Dictionary containing trial data. Must include:
                - user_id: str
                - start_date: datetime
                - end_date: datetime
                Optional:
                - is_active: bool (defaults to True)
                - total_days: int (defaults to 7)
                - ended_at: datetime (set for trials ended early)

        Returns:
            Created Trial object
        """
        trial = Trial(
            user_id=trial_data["user_id"],
            start_date=trial_data["start_date"],
            end_date=trial_data["end_date"],
            is_active=trial_data.get("is_active", True),
            total_days=trial_data.get("total_days", 7),
            ended_at=trial_data.get("ended_at"),
        )
        self.db.add(trial)
        await self.db.flush()
        await self.db.refresh(trial)
        return trial

    async def upsert(self, user_id: str, values: dict) -> Trial:
        """
        Update the user's latest trial with values, creating it if missing.

        Args:
            user_id: Owner of the trial
            values: Column values to write (e.g., {"end_date": ..., "is_active": False})

        Returns:
            The written Trial object
        """
        trial = await self.get_latest(user_id)
        if trial is None:
            return await self.create_trial({"user_id": user_id, **values})

        for key, value in values.items():
            if hasattr(trial, key) and key != "user_id":
                setattr(trial, key, value)

        await self.db.flush()
        await self.db.refresh(trial)
        return trial
