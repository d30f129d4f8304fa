"""
Shared utility functions for routers and services
"""
import json
import logging
from time import time
from typing import Any, Awaitable, Callable, Dict, Optional

import redis

from config import settings

logger = logging.getLogger(__name__)

# Redis client shared by caching and rate limiting (None when REDIS_URL is unset or unreachable)
_redis_client: Optional[redis.Redis] = None
_redis_checked = False


def get_redis_client() -> Optional[redis.Redis]:
    """Connect once on first use; later calls reuse the result."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True

    if not settings.redis_url:
        logger.info("REDIS_URL not set. Caching and rate limiting run without Redis.")
        return None

    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        _redis_client = client
        logger.info("Redis connected successfully")
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to direct execution.")
        _redis_client = None
    return _redis_client


async def get_cached(key: str, fallback_func: Callable[[], Awaitable[Any]], ttl_seconds: int) -> Any:
    """
    Distributed caching utility with Redis fallback.

    Attempts to fetch data from Redis cache. If not found or Redis is unavailable,
    executes the fallback function and stores the result in Redis with TTL.
    None results are never cached.

    Args:
        key: Redis cache key (e.g., "user:123")
        fallback_func: Async callable that returns the data to cache
        ttl_seconds: Time-to-live in seconds for the cached value

    Returns:
        The cached value or the result from fallback_func

    Example:
        user_data = await get_cached(
            f"user:{user_id}",
            lambda: fetch_user_from_db(user_id),
            ttl_seconds=300
        )
    """
    client = get_redis_client()
    if client is not None:
        try:
            cached_value = client.get(key)
            if cached_value is not None:
                try:
                    return json.loads(cached_value)
                except (json.JSONDecodeError, TypeError):
                    return cached_value
        except redis.RedisError as e:
            logger.warning(f"Redis cache get failed for key '{key}': {e}. Executing fallback.")

    result = await fallback_func()

    if client is not None and result is not None:
        try:
            cache_value = json.dumps(result) if isinstance(result, (dict, list)) else str(result)
            client.setex(key, ttl_seconds, cache_value)
        except redis.RedisError as e:
            logger.warning(f"Redis cache set failed for key '{key}': {e}. Result not cached.")

    return result


async def invalidate_cached(key: str) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.delete(key)
    except redis.RedisError as e:
        logger.warning(f"Redis cache delete failed for key '{key}': {e}")


# Revoked session ids when Redis is unavailable (jti -> expiry timestamp)
_revoked_tokens: Dict[str, float] = {}


def _prune_revoked(now: float) -> None:
    for jti in [jti for jti, expires_at in _revoked_tokens.items() if expires_at <= now]:
        del _revoked_tokens[jti]


async def revoke_token(jti: str, ttl_seconds: int) -> None:
    """
    Deny a session token id until it would have expired anyway.
    Stored in Redis when available, otherwise in process memory.
    """
    if not jti or ttl_seconds <= 0:
        return

    client = get_redis_client()
    if client is not None:
        try:
            client.setex(f"revoked_token:{jti}", ttl_seconds, "1")
            return
        except redis.RedisError as e:
            logger.warning(f"Redis revoke failed for token {jti}: {e}. Using in-memory denylist.")

    now = time()
    _prune_revoked(now)
    _revoked_tokens[jti] = now + ttl_seconds


async def is_token_revoked(jti: Optional[str]) -> bool:
    if not jti:
        return False

    client = get_redis_client()
    if client is not None:
        try:
            if client.exists(f"revoked_token:{jti}"):
                return True
        except redis.RedisError as e:
            logger.warning(f"Redis revoke lookup failed for token {jti}: {e}. Checking in-memory denylist.")

    expires_at = _revoked_tokens.get(jti)
    return expires_at is not None and expires_at > time()
