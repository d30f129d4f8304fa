"""
Authentication routes and dependencies
"""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import (
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    decode_session_token,
    extract_token,
    seconds_until_expiry,
)
from config import settings
from crud.user import UserRepository
from database import get_db
from utils.shared_utils import get_cached, invalidate_cached, is_token_revoked, revoke_token

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

USER_CACHE_TTL_SECONDS = 300


def _secure_cookies() -> bool:
    return settings.app_url.startswith("https://")


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=_secure_cookies(),
        samesite="lax",
        path="/",
        max_age=SESSION_COOKIE_MAX_AGE,
    )


def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=_secure_cookies(),
        samesite="lax",
        path="/",
        max_age=0,
    )


async def _get_user_data_with_caching(user_id: str, user_repo: UserRepository) -> Optional[dict]:
    """
    Fetch the user's identity, cached for 5 minutes.
    Role and plan are never cached; they are read from the profile on demand.
    """
    async def fetch_user():
        user = await user_repo.get_user_by_id(user_id)
        if not user:
            return None
        return {
            "user_id": user.id,
            "email": user.email,
            "name": user.name,
            "image": user.image,
            "email_verified": user.email_verified,
        }

    user_dict = await get_cached(
        key=f"user:{user_id}",
        fallback_func=fetch_user,
        ttl_seconds=USER_CACHE_TTL_SECONDS,
    )
    return user_dict


async def resolve_session(token: Optional[str], db: AsyncSession) -> Optional[dict]:
    """Token -> user dict, or None when the token is missing, invalid, revoked or the user is gone."""
    if not token:
        return None

    payload = decode_session_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id or await is_token_revoked(payload.get("jti")):
        return None

    return await _get_user_data_with_caching(str(user_id), UserRepository(db))


async def get_optional_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> Optional[dict]:
    """Like get_current_user but returns None for anonymous requests."""
    try:
        return await resolve_session(extract_token(auth_token, authorization), db)
    except ValueError as e:
        # AUTH_SECRET missing: nobody can be signed in
        logger.warning(f"Session lookup skipped: {e}")
        return None


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency function to get current authenticated user.

    Authentication priority:
    1. auth_token cookie (set by the OAuth callback)
    2. Authorization: Bearer header (API consumers)
    3. Raise 401 if neither is valid
    """
    token = extract_token(auth_token, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    try:
        payload = decode_session_token(token)
    except ValueError as e:
        logger.error(str(e))
        raise HTTPException(status_code=401, detail="Authentication is not configured")

    if not payload or not payload.get("sub") or await is_token_revoked(payload.get("jti")):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await _get_user_data_with_caching(str(payload["sub"]), UserRepository(db))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


@auth_router.get("/get-session")
async def get_session(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
):
    """Current session or null"""
    token = extract_token(auth_token, authorization)
    try:
        user = await resolve_session(token, db)
    except ValueError:
        user = None
    if not user:
        return JSONResponse(content=None)

    payload = decode_session_token(token)
    return {
        "user": {
            "id": user["user_id"],
            "email": user["email"],
            "name": user["name"],
            "image": user["image"],
            "emailVerified": user["email_verified"],
        },
        "session": {
            "userId": user["user_id"],
            "expiresAt": payload.get("exp"),
        },
    }


@auth_router.post("/sign-out")
async def sign_out(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
):
    """Revoke the presented token and clear the session cookie"""
    token = extract_token(auth_token, authorization)
    try:
        payload = decode_session_token(token) if token else None
    except ValueError as e:
        logger.warning(f"Sign-out without token revocation: {e}")
        payload = None

    if payload:
        await revoke_token(payload.get("jti"), seconds_until_expiry(payload))
        if payload.get("sub"):
            await invalidate_cached(f"user:{payload['sub']}")

    response = JSONResponse(content={"ok": True, "message": "Signed out successfully"})
    clear_session_cookie(response)
    return response
