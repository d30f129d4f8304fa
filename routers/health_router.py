"""
Health Router - database and Stripe status for uptime checks
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from database import check_connection, check_secondary_connection, is_secondary_configured
from services.stripe_client import is_stripe_configured

health_router = APIRouter(prefix="/api", tags=["health"])


@health_router.get("/health")
async def health():
    """200 when the primary database answers, 503 otherwise."""
    primary_ok = await check_connection()

    if is_secondary_configured():
        secondary = "ok" if await check_secondary_connection() else "error"
    else:
        secondary = "not_configured"

    return JSONResponse(
        status_code=200 if primary_ok else 503,
        content={
            "ok": primary_ok,
            "data": {
                "database": "ok" if primary_ok else "error",
                "secondary_database": secondary,
                "stripe_configured": is_stripe_configured(),
            },
            "error": None if primary_ok else "database_unavailable",
            "message": "OK" if primary_ok else "Primary database is unreachable",
        },
    )
