import json
import logging
from time import time
from typing import Dict, Optional, Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from utils.shared_utils import get_redis_client

logger = logging.getLogger(__name__)

# Stripe retries webhooks on its own schedule; never throttle them
EXEMPT_PATHS = ("/api/stripe/webhook", "/static/")


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Distributed rate limiter using Redis (with fallback to in-memory).
    Uses Token Bucket Algorithm.
    Default: 60 requests per 60 seconds per IP.
    """

    def __init__(self, app, requests_per_minute: int = 60):
        super().__init__(app)
        self.capacity = requests_per_minute
        self.refill_time_window = 60.0
        # Fallback: in-memory storage (ip -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._last_prune = time()

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _refill(self, tokens: float, last_refill: float, now: float) -> float:
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.refill_time_window) * self.capacity
        return min(self.capacity, tokens + refill)

    def _check_rate_limit_redis(self, client: redis.Redis, ip: str) -> Optional[bool]:
        """
        Token bucket stored in Redis as {"tokens": float, "last_refill": float}.
        Returns None when Redis fails so the caller can fall back to memory.
        """
        try:
            key = f"rate_limit:{ip}"
            now = time()

            bucket_data = client.get(key)
            if bucket_data:
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                tokens = float(self.capacity)
                last_refill = now

            tokens = self._refill(tokens, last_refill, now)
            if tokens < 1.0:
                return False

            client.setex(
                key,
                int(self.refill_time_window) + 10,
                json.dumps({"tokens": tokens - 1.0, "last_refill": now}),
            )
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _prune_buckets(self, now: float) -> None:
        """Drop buckets that have been idle for a full window (already back at capacity)."""
        stale = [ip for ip, (_, last_refill) in self._buckets.items() if now - last_refill >= self.refill_time_window]
        for ip in stale:
            del self._buckets[ip]
        self._last_prune = now

    def _check_rate_limit_memory(self, ip: str) -> bool:
        now = time()
        if now - self._last_prune >= self.refill_time_window:
            self._prune_buckets(now)

        tokens, last_refill = self._buckets.get(ip, (self.capacity, now))
        tokens = self._refill(tokens, last_refill, now)

        if tokens < 1.0:
            return False

        self._buckets[ip] = (tokens - 1.0, now)
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path.startswith(EXEMPT_PATHS):
            return await call_next(request)

        ip = self._get_client_ip(request)

        allowed = None
        client = get_redis_client()
        if client is not None:
            allowed = self._check_rate_limit_redis(client, ip)
        if allowed is None:
            allowed = self._check_rate_limit_memory(ip)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {ip} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "data": {},
                    "error": "rate_limited",
                    "message": "Rate limit exceeded. Try again shortly.",
                },
            )

        return await call_next(request)
