"""
Page routes for the server-rendered web interface
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth import get_optional_user
from config import settings
from routers.oauth_router import safe_callback_path

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

NAV_LINKS = [
    {"href": "/", "label": "Home"},
    {"href": "/privacy", "label": "Privacy"},
    {"href": "/terms", "label": "Terms"},
]

LEGAL_LINKS = [
    {"href": "/privacy", "label": "Privacy Policy"},
    {"href": "/terms", "label": "Terms of Service"},
]

FEATURES = [
    {
        "title": "Google sign-in",
        "description": "OAuth login with secure session cookies",
        "body": "Users sign in with their Google account. Sessions last seven days.",
    },
    {
        "title": "Stripe billing",
        "description": "Subscriptions, donations and the customer portal",
        "body": "Checkout, plan upgrades and cancellations are kept in sync through webhooks.",
    },
    {
        "title": "Roles and plans",
        "description": "Permissions and subscription tiers per user",
        "body": "Gate features on admin role, paid plan or donor status.",
    },
]

LOGIN_ERRORS = {
    "oauth_failed": "An error occurred during sign in. Please try again.",
    "missing_email": "Your Google account did not share an email address.",
}

pages_router = APIRouter(tags=["pages"])


def base_context(request: Request, user: Optional[dict] = None, **extra) -> dict:
    """Values every template needs for the navbar and footer"""
    context = {
        "request": request,
        "user": user,
        "app_name": settings.app_name,
        "app_url": settings.app_url,
        "company_name": settings.company_name,
        "support_email": settings.support_email,
        "company_website": settings.company_website,
        "nav_links": NAV_LINKS,
        "legal_links": LEGAL_LINKS,
        "current_path": request.url.path,
        "current_year": datetime.now(timezone.utc).year,
    }
    context.update(extra)
    return context


def render_template(request: Request, template_name: str, context: dict, status_code: int = 200):
    return templates.TemplateResponse(request, template_name, context, status_code=status_code)


@pages_router.get("/", response_class=HTMLResponse)
async def home(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    return render_template(request, "home.html", base_context(request, user, features=FEATURES))


@pages_router.get("/login", response_class=HTMLResponse)
async def login(
    request: Request,
    callback_url: Optional[str] = None,
    error: Optional[str] = None,
    user: Optional[dict] = Depends(get_optional_user)
):
    """Signed-in users are sent on to callback_url (same-origin paths only) or home."""
    target = safe_callback_path(callback_url)
    if user:
        return RedirectResponse(url=target or "/", status_code=303)

    return render_template(
        request,
        "login.html",
        base_context(
            request,
            callback_url=target,
            error=LOGIN_ERRORS.get(error) if error else None,
            google_configured=settings.google_oauth_configured,
        ),
    )


@pages_router.get("/privacy", response_class=HTMLResponse)
async def privacy(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    return render_template(
        request,
        "privacy.html",
        base_context(request, user, last_updated=settings.privacy_policy_last_updated),
    )


@pages_router.get("/terms", response_class=HTMLResponse)
async def terms(request: Request, user: Optional[dict] = Depends(get_optional_user)):
    return render_template(
        request,
        "terms.html",
        base_context(request, user, last_updated=settings.terms_of_service_last_updated),
    )
