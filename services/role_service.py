"""
Role & Plan Service

Role = permissions (admin vs user)
Plan = subscription tier (free, pro, enterprise)
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crud.user_profile import UserProfileRepository
from database_models import UserPlan, UserRole
from validations import (
    RecordDonationRequest,
    UpdateUserRoleRequest,
    is_non_empty_string,
    parse_plan,
    parse_role,
    validate_input,
)

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = {"error": "Not authenticated", "is_error": True}


class RoleService:
    """
    Service class for role and plan lookups and changes.

    Methods taking `user` expect the dict returned by auth.get_current_user
    (or None for anonymous callers). The upgrade/downgrade/donation helpers are
    internal: they are called from the webhook flow and raise ValueError on bad input.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.profiles = UserProfileRepository(db)

    # Role (permissions)

    async def get_my_role(self, user: Optional[dict]) -> dict:
        """Current user's role; "user" when no profile exists yet."""
        if not user:
            return NOT_AUTHENTICATED
        try:
            profile = await self.profiles.get_by_user_id(user["user_id"])
            role = profile.role if profile else UserRole.USER
            return {"data": UserRole(role).value, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get role: {e}", exc_info=True)
            return {"error": "Failed to get role", "is_error": True}

    async def has_role(self, user: Optional[dict], role) -> bool:
        try:
            wanted = parse_role(role)
        except ValueError:
            return False
        result = await self.get_my_role(user)
        if result["is_error"]:
            return False
        return result["data"] == wanted.value

    async def is_admin(self, user: Optional[dict]) -> bool:
        return await self.has_role(user, UserRole.ADMIN)

    async def update_user_role(self, user: Optional[dict], target_user_id: str, new_role) -> dict:
        """
        Change another user's role. Caller must be an admin and cannot demote themselves.
        """
        if not user:
            return NOT_AUTHENTICATED

        validation = validate_input(UpdateUserRoleRequest, {"user_id": target_user_id, "role": new_role})
        if validation["is_error"]:
            return {"error": validation["error"], "is_error": True}
        request = validation["data"]

        try:
            admin_profile = await self.profiles.get_by_user_id(user["user_id"])
            if admin_profile is None or admin_profile.role != UserRole.ADMIN:
                return {"error": "Unauthorized - admin access required", "is_error": True}

            if request.user_id == user["user_id"] and request.role != UserRole.ADMIN:
                return {"error": "Cannot demote yourself from admin", "is_error": True}

            await self.profiles.update_fields(request.user_id, {"role": request.role})
            logger.info(f"User {user['user_id']} set role of {request.user_id} to {request.role.value}")
            return {"data": None, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to update role: {e}", exc_info=True)
            return {"error": "Failed to update role", "is_error": True}

    # Plan (subscription tier)

    async def get_my_plan(self, user: Optional[dict]) -> dict:
        """Current user's plan; "free" when no profile exists yet."""
        if not user:
            return NOT_AUTHENTICATED
        try:
            profile = await self.profiles.get_by_user_id(user["user_id"])
            plan = profile.plan if profile else UserPlan.FREE
            return {"data": UserPlan(plan).value, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get plan: {e}", exc_info=True)
            return {"error": "Failed to get plan", "is_error": True}

    async def has_paid_access(self, user: Optional[dict]) -> bool:
        """Any paid plan, or admin."""
        if not user:
            return False
        try:
            profile = await self.profiles.get_by_user_id(user["user_id"])
        except Exception as e:
            logger.error(f"Failed to check paid access: {e}", exc_info=True)
            return False
        if profile is None:
            return False
        return profile.role == UserRole.ADMIN or profile.plan != UserPlan.FREE

    async def is_donor(self, user: Optional[dict]) -> bool:
        """Has donated anything, or admin."""
        if not user:
            return False
        try:
            profile = await self.profiles.get_by_user_id(user["user_id"])
        except Exception as e:
            logger.error(f"Failed to check donor status: {e}", exc_info=True)
            return False
        if profile is None:
            return False
        return profile.role == UserRole.ADMIN or (profile.total_donations or 0) > 0

    # Internal (webhook) helpers

    async def upgrade_plan(self, user_id: str, plan) -> None:
        """Set a user's plan after a successful subscription."""
        if not is_non_empty_string(user_id):
            raise ValueError("Invalid user ID")
        valid_plan = parse_plan(plan)

        await self.profiles.update_fields(user_id, {"plan": valid_plan})
        logger.info(f"Upgraded user {user_id} to plan {valid_plan.value}")

    async def downgrade_plan(self, user_id: str) -> None:
        """Back to free when a subscription ends. Admins are left alone."""
        if not is_non_empty_string(user_id):
            raise ValueError("Invalid user ID")

        profile = await self.profiles.get_by_user_id(user_id)
        if profile is not None and profile.role == UserRole.ADMIN:
            return

        await self.profiles.update_fields(user_id, {"plan": UserPlan.FREE})
        logger.info(f"Downgraded user {user_id} to free plan")

    async def record_donation(self, user_id: str, amount_in_cents: int) -> None:
        """Add a donation to the profile's totals."""
        validation = validate_input(RecordDonationRequest, {"user_id": user_id, "amount_in_cents": amount_in_cents})
        if validation["is_error"]:
            raise ValueError(validation["error"])
        request = validation["data"]

        await self.profiles.add_donation(request.user_id, request.amount_in_cents)
        logger.info(f"Recorded donation of {request.amount_in_cents} cents for user {request.user_id}")

    async def ensure_user_profile(self, user_id: str) -> None:
        """Create a default profile (role user, plan free) if the user has none."""
        if not is_non_empty_string(user_id):
            raise ValueError("Invalid user ID")

        if await self.profiles.get_by_user_id(user_id) is not None:
            return

        # A concurrent request may insert first; treat that as success
        try:
            async with self.db.begin_nested():
                await self.profiles.create(user_id, role=UserRole.USER, plan=UserPlan.FREE)
        except IntegrityError:
            logger.info(f"Profile for user {user_id} already created concurrently")
