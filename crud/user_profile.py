"""
UserProfileRepository for database operations on UserProfile model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select, update
from database_models import UserPlan, UserProfile, UserRole, utcnow


class UserProfileRepository:
    """
    Repository class for UserProfile database operations.
    Profiles are keyed by user_id (one profile per user).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_user_id(self, user_id: str) -> Optional[UserProfile]:
        result = await self.db.execute(
            select(UserProfile).where(UserProfile.user_id == user_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: str, **fields) -> UserProfile:
        profile = UserProfile(
            user_id=user_id,
            role=fields.pop("role", UserRole.USER),
            plan=fields.pop("plan", UserPlan.FREE),
            **fields,
        )
        self.db.add(profile)
        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def upsert(self, user_id: str, fields: dict) -> UserProfile:
        """
        Insert a profile for user_id or update the given fields on the existing one.

        Args:
            user_id: Owner of the profile
            fields: Column values to set (e.g. bio, location, website)

        Returns:
            The inserted or updated UserProfile
        """
        profile = await self.get_by_user_id(user_id)
        if profile is None:
            return await self.create(user_id, **fields)

        for key, value in fields.items():
            setattr(profile, key, value)
        profile.updated_at = utcnow()
        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def update_fields(self, user_id: str, fields: dict) -> None:
        """UPDATE ... WHERE user_id = ? (no-op when the profile is missing)"""
        await self.db.execute(
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(**fields, updated_at=utcnow())
        )

    async def add_donation(self, user_id: str, amount_in_cents: int) -> None:
        """Increment donation totals in the database, not in Python."""
        await self.db.execute(
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(
                total_donations=UserProfile.total_donations + amount_in_cents,
                lifetime_value=UserProfile.lifetime_value + amount_in_cents,
                updated_at=utcnow(),
            )
        )

    async def delete_by_user_id(self, user_id: str) -> None:
        await self.db.execute(
            delete(UserProfile).where(UserProfile.user_id == user_id)
        )
