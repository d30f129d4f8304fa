"""
Tests for users, session tokens, the session endpoints and the Google OAuth callback
"""
import time
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from auth import get_current_user, get_optional_user
from auth_utils import create_session_token, decode_session_token, extract_token
from config import settings
from crud.user import UserRepository
from crud.user_profile import UserProfileRepository
from database_models import UserPlan, UserRole
from routers.oauth_router import safe_callback_path
from tests.conftest import auth_headers
from utils import shared_utils


@pytest.mark.asyncio
async def test_create_and_get_user(test_db):
    """Emails are stored lowercased and looked up case-insensitively."""
    user_repo = UserRepository(test_db)

    created_user = await user_repo.create_user({"email": "Test@Example.com", "name": "Test"})
    await test_db.commit()

    assert created_user.id
    assert created_user.email == "test@example.com"
    assert created_user.email_verified is False

    retrieved_user = await user_repo.get_user_by_email("TEST@example.com")
    assert retrieved_user is not None
    assert retrieved_user.id == created_user.id
    assert (await user_repo.get_user_by_id(created_user.id)).email == "test@example.com"


@pytest.mark.asyncio
async def test_link_account_is_idempotent(test_db, make_user):
    user = await make_user()
    user_repo = UserRepository(test_db)

    first = await user_repo.link_account(user, "google", "sub-1", {"access_token": "a1", "scope": "openid"})
    second = await user_repo.link_account(user, "google", "sub-1", {"access_token": "a2"})

    assert first.id == second.id
    assert second.access_token == "a2"
    assert second.scope == "openid"


def test_session_token_round_trip():
    token = create_session_token("user-1")
    payload = decode_session_token(token)
    assert payload["sub"] == "user-1"
    assert payload["exp"] > payload["iat"]
    assert payload["jti"]
    assert decode_session_token(create_session_token("user-1"))["jti"] != payload["jti"]


def test_expired_and_tampered_tokens_decode_to_none():
    expired = create_session_token("user-1", expires_in=timedelta(seconds=-10))
    assert decode_session_token(expired) is None
    assert decode_session_token(create_session_token("user-1") + "x") is None
    assert decode_session_token("not-a-jwt") is None


def test_tokens_require_auth_secret(monkeypatch):
    monkeypatch.setattr(settings, "auth_secret", None)
    with pytest.raises(ValueError):
        create_session_token("user-1")
    with pytest.raises(ValueError):
        decode_session_token("anything")


def test_extract_token_prefers_cookie():
    assert extract_token("cookie-token", "Bearer header-token") == "cookie-token"
    assert extract_token(None, "Bearer header-token") == "header-token"
    assert extract_token(None, "Basic abc") is None
    assert extract_token(None, None) is None


@pytest.mark.asyncio
async def test_get_current_user_dependency(test_db, make_user):
    user = await make_user(email="dep@example.com")
    token = create_session_token(user.id)

    current = await get_current_user(auth_token=token, authorization=None, db=test_db)
    assert current["user_id"] == user.id
    assert current["email"] == "dep@example.com"

    with pytest.raises(HTTPException) as exc:
        await get_current_user(auth_token=None, authorization=None, db=test_db)
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException) as exc:
        await get_current_user(auth_token="garbage", authorization=None, db=test_db)
    assert exc.value.detail == "Invalid or expired token"

    with pytest.raises(HTTPException) as exc:
        await get_current_user(auth_token=create_session_token("ghost"), authorization=None, db=test_db)
    assert exc.value.detail == "User not found"


@pytest.mark.asyncio
async def test_get_optional_user_returns_none_when_anonymous(test_db):
    assert await get_optional_user(auth_token=None, authorization=None, db=test_db) is None
    assert await get_optional_user(auth_token="garbage", authorization=None, db=test_db) is None


@pytest.mark.asyncio
async def test_get_session_endpoint(client, make_user):
    anonymous = await client.get("/api/auth/get-session")
    assert anonymous.status_code == 200
    assert anonymous.json() is None

    user = await make_user(email="session@example.com", name="Session User")
    response = await client.get("/api/auth/get-session", headers=auth_headers(user))
    body = response.json()
    assert body["user"]["id"] == user.id
    assert body["user"]["email"] == "session@example.com"
    assert body["user"]["emailVerified"] is True
    assert body["session"]["userId"] == user.id
    assert body["session"]["expiresAt"]


@pytest.mark.asyncio
async def test_sign_out_clears_cookie(client, make_user):
    user = await make_user()
    response = await client.post("/api/auth/sign-out", headers=auth_headers(user))
    assert response.status_code == 200
    set_cookie = response.headers["set-cookie"]
    assert "auth_token=" in set_cookie
    assert "Max-Age=0" in set_cookie


@pytest.mark.asyncio
async def test_sign_out_revokes_bearer_token(client, make_user):
    user = await make_user(email="leaving@example.com")
    headers = auth_headers(user)
    assert (await client.get("/api/roles/me", headers=headers)).status_code == 200

    await client.post("/api/auth/sign-out", headers=headers)

    assert (await client.get("/api/auth/get-session", headers=headers)).json() is None
    assert (await client.get("/api/roles/me", headers=headers)).status_code == 401
    # Other sessions of the same user stay valid
    assert (await client.get("/api/roles/me", headers=auth_headers(user))).status_code == 200


@pytest.mark.asyncio
async def test_sign_out_without_token_only_clears_cookie(client):
    response = await client.post("/api/auth/sign-out")
    assert response.status_code == 200
    assert "Max-Age=0" in response.headers["set-cookie"]


@pytest.mark.asyncio
async def test_revoked_token_ids_expire_with_the_token(monkeypatch):
    monkeypatch.setattr(shared_utils, "_revoked_tokens", {})

    await shared_utils.revoke_token("jti-live", 60)
    await shared_utils.revoke_token("jti-expired", 0)
    assert await shared_utils.is_token_revoked("jti-live") is True
    assert await shared_utils.is_token_revoked("jti-expired") is False
    assert await shared_utils.is_token_revoked(None) is False

    shared_utils._revoked_tokens["jti-stale"] = time.time() - 1
    assert await shared_utils.is_token_revoked("jti-stale") is False
    await shared_utils.revoke_token("jti-other", 60)
    assert "jti-stale" not in shared_utils._revoked_tokens


def test_safe_callback_path():
    assert safe_callback_path("/account") == "/account"
    assert safe_callback_path("//evil.com") is None
    assert safe_callback_path("https://evil.com") is None
    assert safe_callback_path(None) is None


@pytest.mark.asyncio
async def test_google_sign_in_not_configured(client):
    response = await client.get("/api/auth/sign-in/google", follow_redirects=False)
    assert response.status_code == 503


def session_cookie(response) -> str:
    for header in response.headers.get_list("set-cookie"):
        if header.startswith("auth_token="):
            return header.split(";")[0][len("auth_token="):]
    raise AssertionError("auth_token cookie not set")


def _google_client(userinfo):
    google = MagicMock()
    google.authorize_access_token = AsyncMock(return_value={
        "access_token": "google-access",
        "id_token": "google-id",
        "scope": "openid email profile",
        "expires_at": 1893456000,
        "userinfo": userinfo,
    })
    return google


@pytest.mark.asyncio
async def test_google_callback_creates_user_profile_and_session(client, test_db):
    google = _google_client({
        "sub": "google-sub-1",
        "email": "New.User@Example.com",
        "name": "New User",
        "picture": "https://example.com/avatar.png",
        "email_verified": True,
    })

    with patch("routers.oauth_router.get_google_client", return_value=google):
        response = await client.get("/api/auth/callback/google?code=abc&state=xyz", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "http://testserver"
    assert "auth_token=" in response.headers["set-cookie"]

    user = await UserRepository(test_db).get_user_by_email("new.user@example.com")
    assert user is not None
    assert user.name == "New User"
    assert user.email_verified is True

    account = await UserRepository(test_db).get_account("google", "google-sub-1")
    assert account.user_id == user.id
    assert account.access_token == "google-access"

    profile = await UserProfileRepository(test_db).get_by_user_id(user.id)
    assert profile.role == UserRole.USER
    assert profile.plan == UserPlan.FREE


@pytest.mark.asyncio
async def test_google_callback_reuses_existing_user(client, test_db, make_user):
    existing = await make_user(email="jane@example.com", name="Jane")
    google = _google_client({"sub": "google-sub-2", "email": "jane@example.com", "name": "Jane"})

    with patch("routers.oauth_router.get_google_client", return_value=google):
        response = await client.get("/api/auth/callback/google", follow_redirects=False)

    assert response.status_code == 302
    token = session_cookie(response)
    assert decode_session_token(token)["sub"] == existing.id


@pytest.mark.asyncio
async def test_google_callback_without_email_redirects_to_login(client):
    google = _google_client({"sub": "google-sub-3"})

    with patch("routers.oauth_router.get_google_client", return_value=google):
        response = await client.get("/api/auth/callback/google", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].endswith("/login?error=missing_email")


@pytest.mark.asyncio
async def test_google_callback_refreshes_cached_identity(client, test_db, make_user):
    existing = await make_user(email="pic@example.com", name="Pic")
    google = _google_client({
        "sub": "google-sub-4",
        "email": "pic@example.com",
        "picture": "https://example.com/new.png",
        "email_verified": True,
    })

    with patch("routers.oauth_router.get_google_client", return_value=google), \
            patch("routers.oauth_router.invalidate_cached", new_callable=AsyncMock) as invalidate:
        response = await client.get("/api/auth/callback/google", follow_redirects=False)

    assert response.status_code == 302
    invalidate.assert_awaited_once_with(f"user:{existing.id}")
    user = await UserRepository(test_db).get_user_by_id(existing.id)
    assert user.image == "https://example.com/new.png"


@pytest.mark.asyncio
async def test_google_callback_leaves_cache_when_nothing_changed(client, make_user):
    await make_user(email="same@example.com", name="Same")
    google = _google_client({"sub": "google-sub-5", "email": "same@example.com"})

    with patch("routers.oauth_router.get_google_client", return_value=google), \
            patch("routers.oauth_router.invalidate_cached", new_callable=AsyncMock) as invalidate:
        await client.get("/api/auth/callback/google", follow_redirects=False)

    invalidate.assert_not_awaited()
