"""
SaaS starter backend
Google sign-in, Stripe billing, roles/plans and server-rendered pages
"""

from pathlib import Path
import logging
import secrets
import traceback

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import JSONResponse

from auth import auth_router
from config import settings, IS_PRODUCTION
from database import init_db, close_connection, close_secondary_connection
from routers.billing_router import billing_router, stripe_webhook_router
from routers.health_router import health_router
from routers.oauth_router import oauth_router
from routers.pages_router import pages_router, base_context, render_template
from routers.profile_router import profile_router
from routers.roles_router import roles_router, admin_router
from utils.rate_limit import RateLimiterMiddleware

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI(title=settings.app_name)


def wants_html(request: Request) -> bool:
    """Browser page requests get rendered pages; API callers get JSON."""
    if request.url.path.startswith("/api/"):
        return False
    return "text/html" in request.headers.get("accept", "")


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            if wants_html(request):
                context = base_context(request, error_message=None if IS_PRODUCTION else str(e))
                return render_template(request, "error.html", context, status_code=500)
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "Internal Server Error"}
            )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Forms post to billing endpoints that redirect to Stripe-hosted pages
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "connect-src 'self'; "
            "img-src 'self' data: https:; "
            "font-src 'self' data:; "
            "object-src 'none'; "
            "base-uri 'self'; "
            "form-action 'self' https://checkout.stripe.com https://billing.stripe.com https://accounts.google.com;"
        )

        # Only in production, where HTTPS is guaranteed
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


def _session_secret() -> str:
    if settings.auth_secret:
        return settings.auth_secret
    logger.warning("AUTH_SECRET is not set. Using a random OAuth state secret for this process.")
    return secrets.token_urlsafe(32)


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware, requests_per_minute=settings.rate_limit_per_minute)
app.add_middleware(SecurityHeadersMiddleware)

# Holds the OAuth state between sign-in and callback
app.add_middleware(
    SessionMiddleware,
    secret_key=_session_secret(),
    session_cookie="oauth_session",
    max_age=600,
    same_site="lax",
    https_only=settings.app_url.startswith("https://"),
)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url.rstrip("/")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def not_found_page_handler(request: Request, exc: StarletteHTTPException):
    """Render the 404 page for browser requests, JSON otherwise."""
    if exc.status_code == 404 and wants_html(request):
        return render_template(request, "not_found.html", base_context(request), status_code=404)
    return await http_exception_handler(request, exc)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================
@app.on_event("startup")
async def check_config_on_startup():
    """Warn about missing configuration (non-fatal)"""
    missing = []
    key_checks = {
        "AUTH_SECRET": settings.auth_secret,
        "GOOGLE_CLIENT_ID": settings.google_client_id,
        "GOOGLE_CLIENT_SECRET": settings.google_client_secret,
        "STRIPE_SECRET_KEY": settings.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
    }
    for env_key, value in key_checks.items():
        if not value:
            missing.append(env_key)
    if missing:
        logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
    else:
        logger.info("Startup check: All critical environment variables are set")


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """Create all tables."""
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@app.on_event("shutdown")
async def close_database():
    await close_secondary_connection()
    await close_connection()


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(auth_router)
app.include_router(oauth_router)
app.include_router(roles_router)
app.include_router(admin_router)
app.include_router(profile_router)
app.include_router(billing_router)
app.include_router(stripe_webhook_router)
app.include_router(health_router)
app.include_router(pages_router)

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
