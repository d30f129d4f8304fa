"""
Google Single Sign-On (SSO) Router
Handles the Google OAuth flow and issues the session cookie
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import set_session_cookie
from auth_utils import create_session_token
from config import settings
from crud.user import UserRepository
from database import get_db
from services.role_service import RoleService
from utils.shared_utils import invalidate_cached

logger = logging.getLogger(__name__)

GOOGLE_PROVIDER = "google"
GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"
CALLBACK_URL_SESSION_KEY = "callback_url"

oauth = OAuth()

oauth_router = APIRouter(prefix="/api/auth", tags=["auth"])


def get_google_client():
    """Registered Google client, or None when GOOGLE_CLIENT_ID/SECRET are unset."""
    if not settings.google_oauth_configured:
        return None
    client = oauth.create_client(GOOGLE_PROVIDER)
    if client is None:
        oauth.register(
            name=GOOGLE_PROVIDER,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=GOOGLE_METADATA_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        client = oauth.create_client(GOOGLE_PROVIDER)
    return client


def safe_callback_path(value: Optional[str]) -> Optional[str]:
    """Only same-origin absolute paths are allowed as post-login targets."""
    if not value or not value.startswith("/") or value.startswith("//") or "\\" in value:
        return None
    return value


def _redirect_uri() -> str:
    return f"{settings.auth_base_url}/api/auth/callback/google"


def _expires_at(token: dict) -> Optional[datetime]:
    expires_at = token.get("expires_at")
    if not expires_at:
        return None
    return datetime.fromtimestamp(int(expires_at), tz=timezone.utc)


@oauth_router.get("/sign-in/google")
async def google_sign_in(request: Request, callback_url: Optional[str] = None):
    """
    Start the Google OAuth flow.
    Authlib stores the state in the signed session cookie.
    """
    client = get_google_client()
    if client is None:
        raise HTTPException(status_code=503, detail="Google OAuth is not configured")

    target = safe_callback_path(callback_url)
    if target:
        request.session[CALLBACK_URL_SESSION_KEY] = target
    else:
        request.session.pop(CALLBACK_URL_SESSION_KEY, None)

    return await client.authorize_redirect(request, _redirect_uri())


@oauth_router.get("/callback/google")
async def google_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Finish the Google OAuth flow: find or create the user, link the Google
    account, make sure a profile exists and set the auth_token cookie.
    """
    client = get_google_client()
    if client is None:
        raise HTTPException(status_code=503, detail="Google OAuth is not configured")

    app_url = settings.app_url.rstrip("/")

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as e:
        logger.error(f"Google OAuth token exchange failed: {e.error} {e.description}")
        return RedirectResponse(url=f"{app_url}/login?error=oauth_failed", status_code=302)

    user_info = token.get("userinfo")
    if not user_info:
        user_info = await client.userinfo(token=token)

    email = (user_info.get("email") or "").lower()
    subject = user_info.get("sub")
    if not email or not subject:
        logger.error("Google profile is missing email or sub")
        return RedirectResponse(url=f"{app_url}/login?error=missing_email", status_code=302)

    user_repo = UserRepository(db)
    user = await user_repo.get_user_by_email(email)
    if user is None:
        user = await user_repo.create_user({
            "email": email,
            "name": user_info.get("name") or "",
            "email_verified": bool(user_info.get("email_verified")),
            "image": user_info.get("picture"),
        })
        logger.info(f"Created user {user.id} from Google sign-in")
    else:
        updates = {}
        if user_info.get("picture") and user_info.get("picture") != user.image:
            updates["image"] = user_info["picture"]
        if user_info.get("email_verified") and not user.email_verified:
            updates["email_verified"] = True
        if updates:
            user = await user_repo.update_user(user, updates)
            await invalidate_cached(f"user:{user.id}")

    await user_repo.link_account(
        user,
        GOOGLE_PROVIDER,
        str(subject),
        {
            "access_token": token.get("access_token"),
            "refresh_token": token.get("refresh_token"),
            "id_token": token.get("id_token"),
            "scope": token.get("scope"),
            "access_token_expires_at": _expires_at(token),
        },
    )
    await RoleService(db).ensure_user_profile(user.id)

    target = safe_callback_path(request.session.pop(CALLBACK_URL_SESSION_KEY, None))
    response = RedirectResponse(url=f"{app_url}{target}" if target else app_url, status_code=302)
    set_session_cookie(response, create_session_token(user.id))
    return response
