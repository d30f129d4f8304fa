"""
Roles Router - role (permissions) and plan (subscription tier) lookups,
plus the admin endpoint for changing another user's role
"""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import error_response, result_response, success_response
from database import get_db
from services.role_service import RoleService

logger = logging.getLogger(__name__)

roles_router = APIRouter(prefix="/api/roles", tags=["roles"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])

# Failure results that map to a status other than 400
ERROR_STATUS = {
    "Unauthorized - admin access required": 403,
    "Failed to get role": 500,
    "Failed to get plan": 500,
    "Failed to update role": 500,
}


@roles_router.get("/me")
async def my_role(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return result_response(await RoleService(db).get_my_role(user), key="role", status_for=ERROR_STATUS)


@roles_router.get("/plan")
async def my_plan(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return result_response(await RoleService(db).get_my_plan(user), key="plan", status_for=ERROR_STATUS)


@roles_router.get("/access")
async def my_access(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Everything the UI needs to gate features in one call"""
    service = RoleService(db)
    role = await service.get_my_role(user)
    plan = await service.get_my_plan(user)
    if role["is_error"] or plan["is_error"]:
        return error_response("Failed to get access", status=500, message="Failed to get access")

    return success_response({
        "role": role["data"],
        "plan": plan["data"],
        "is_admin": await service.is_admin(user),
        "has_paid_access": await service.has_paid_access(user),
        "is_donor": await service.is_donor(user),
    })


@admin_router.put("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    role: str = Body(..., embed=True),
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Admin only. Admins cannot demote themselves."""
    result = await RoleService(db).update_user_role(user, user_id, role)
    if result["is_error"]:
        return result_response(result, status_for=ERROR_STATUS)
    return success_response({"user_id": user_id, "role": role}, message="Role updated")
