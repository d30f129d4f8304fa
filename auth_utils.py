"""
Session token management (signed JWT stored in the auth_token cookie)
"""

import uuid

import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings

# JWT configuration
ALGORITHM = "HS256"
# Tokens are stateless; sign-out denylists the token id (jti) until exp
SESSION_TTL = timedelta(days=7)
SESSION_COOKIE_NAME = "auth_token"
SESSION_COOKIE_MAX_AGE = int(SESSION_TTL.total_seconds())


def create_session_token(user_id: str, expires_in: Optional[timedelta] = None) -> str:
    """Create a session JWT for a user"""
    if not settings.auth_secret:
        raise ValueError("AUTH_SECRET is not set. Cannot create session token.")

    payload = {
        "sub": user_id,
        "jti": uuid.uuid4().hex,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + (expires_in if expires_in is not None else SESSION_TTL),
    }
    return jwt.encode(payload, settings.auth_secret, algorithm=ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """Decode a session JWT. Returns None if invalid or expired."""
    if not settings.auth_secret:
        raise ValueError("AUTH_SECRET is not set. Cannot decode session token.")

    try:
        return jwt.decode(token, settings.auth_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Cookie first, then the Authorization: Bearer header."""
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization.replace("Bearer ", "", 1).strip() or None
    return None


def seconds_until_expiry(payload: dict) -> int:
    """Remaining lifetime of a decoded token, never negative."""
    exp = payload.get("exp")
    if not exp:
        return 0
    return max(0, int(exp - datetime.now(timezone.utc).timestamp()))
