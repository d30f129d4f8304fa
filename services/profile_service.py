"""
Profile Service - read, update and delete the current user's profile
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud.user_profile import UserProfileRepository
from database_models import UserProfile
from validations import UpdateProfileRequest, validate_input

logger = logging.getLogger(__name__)


def serialize_profile(profile: Optional[UserProfile]) -> Optional[dict]:
    if profile is None:
        return None
    return {
        "id": profile.id,
        "user_id": profile.user_id,
        "bio": profile.bio,
        "location": profile.location,
        "website": profile.website,
        "role": profile.role.value if profile.role else None,
        "plan": profile.plan.value if profile.plan else None,
        "total_donations": profile.total_donations,
        "lifetime_value": profile.lifetime_value,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


class ProfileService:
    """
    Pattern for every operation:
    1. Authenticate the user
    2. Validate input
    3. Perform the database operation
    4. Return a normalized result
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.profiles = UserProfileRepository(db)

    async def get_my_profile(self, user: Optional[dict]) -> dict:
        if not user:
            return {"error": "Not authenticated", "is_error": True}
        try:
            profile = await self.profiles.get_by_user_id(user["user_id"])
            return {"data": serialize_profile(profile), "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get profile: {e}", exc_info=True)
            return {"error": "Failed to get profile", "is_error": True}

    async def update_my_profile(self, user: Optional[dict], data) -> dict:
        """
        Insert or update the current user's profile.

        Args:
            user: Current user dict
            data: UpdateProfileRequest or a plain dict with bio/location/website

        Returns:
            Normalized response with the serialized profile
        """
        if not user:
            return {"error": "Not authenticated", "is_error": True}

        validation = validate_input(UpdateProfileRequest, data)
        if validation["is_error"]:
            return {"error": validation["error"], "is_error": True}
        request = validation["data"]

        # Empty strings clear the field
        cleaned = {
            "bio": request.bio or None,
            "location": request.location or None,
            "website": request.website or None,
        }

        try:
            profile = await self.profiles.upsert(user["user_id"], cleaned)
            return {"data": serialize_profile(profile), "is_error": False}
        except Exception as e:
            logger.error(f"Failed to update profile: {e}", exc_info=True)
            return {"error": "Failed to update profile", "is_error": True}

    async def delete_my_profile(self, user: Optional[dict]) -> dict:
        if not user:
            return {"error": "Not authenticated", "is_error": True}
        try:
            await self.profiles.delete_by_user_id(user["user_id"])
            return {"data": None, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to delete profile: {e}", exc_info=True)
            return {"error": "Failed to delete profile", "is_error": True}
