"""
Profile Router - the current user's profile
"""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import result_response
from database import get_db
from services.profile_service import ProfileService

logger = logging.getLogger(__name__)

profile_router = APIRouter(prefix="/api/profile", tags=["profile"])


@profile_router.get("")
async def get_profile(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Profile of the signed-in user (data is null when none exists yet)"""
    return result_response(await ProfileService(db).get_my_profile(user), key="profile", error_status=500)


@profile_router.put("")
async def update_profile(
    data: dict = Body(...),
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create or update bio, location and website.
    Validation failures come back as 422 with the field messages.
    """
    result = await ProfileService(db).update_my_profile(user, data)
    return result_response(
        result,
        key="profile",
        error_status=422,
        status_for={"Failed to update profile": 500},
        message="Profile updated",
    )


@profile_router.delete("")
async def delete_profile(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    result = await ProfileService(db).delete_my_profile(user)
    return result_response(result, error_status=500, message="Profile deleted")
