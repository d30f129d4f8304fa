"""
Tests for the health endpoint and the rate limiter
"""
from time import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import FastAPI

from utils.rate_limit import RateLimiterMiddleware


@pytest.mark.asyncio
async def test_health_ok(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["data"] == {
        "database": "ok",
        "secondary_database": "not_configured",
        "stripe_configured": False,
    }


@pytest.mark.asyncio
async def test_health_reports_database_failure(client, stripe_configured):
    with patch("routers.health_router.check_connection", AsyncMock(return_value=False)):
        response = await client.get("/api/health")

    assert response.status_code == 503
    body = response.json()
    assert body["ok"] is False
    assert body["error"] == "database_unavailable"
    assert body["data"]["database"] == "error"
    assert body["data"]["stripe_configured"] is True


@pytest.mark.asyncio
async def test_health_checks_secondary_database(client):
    with patch("routers.health_router.is_secondary_configured", return_value=True), \
            patch("routers.health_router.check_secondary_connection", AsyncMock(return_value=False)):
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["data"]["secondary_database"] == "error"


def _limited_app(requests_per_minute):
    app = FastAPI()
    app.add_middleware(RateLimiterMiddleware, requests_per_minute=requests_per_minute)

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.post("/api/stripe/webhook")
    async def webhook():
        return {"received": True}

    return app


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_capacity():
    transport = httpx.ASGITransport(app=_limited_app(2))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as limited:
        assert (await limited.get("/ping")).status_code == 200
        assert (await limited.get("/ping")).status_code == 200

        blocked = await limited.get("/ping")
        assert blocked.status_code == 429
        assert blocked.json()["error"] == "rate_limited"

        # Buckets are per client IP
        other = await limited.get("/ping", headers={"X-Forwarded-For": "203.0.113.7"})
        assert other.status_code == 200


@pytest.mark.asyncio
async def test_rate_limiter_skips_stripe_webhook():
    transport = httpx.ASGITransport(app=_limited_app(1))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as limited:
        for _ in range(3):
            assert (await limited.post("/api/stripe/webhook")).status_code == 200


def test_rate_limiter_forgets_idle_clients():
    limiter = RateLimiterMiddleware(FastAPI(), requests_per_minute=2)
    now = time()
    limiter._buckets = {
        "198.51.100.1": (0.0, now - 120),
        "198.51.100.2": (1.0, now - 5),
    }
    limiter._last_prune = now - 61

    assert limiter._check_rate_limit_memory("198.51.100.3") is True

    assert "198.51.100.1" not in limiter._buckets
    assert limiter._buckets["198.51.100.2"] == (1.0, now - 5)
    assert "198.51.100.3" in limiter._buckets

    # A forgotten client starts again with a full bucket
    assert limiter._check_rate_limit_memory("198.51.100.1") is True
    assert limiter._check_rate_limit_memory("198.51.100.1") is True
    assert limiter._check_rate_limit_memory("198.51.100.1") is False
