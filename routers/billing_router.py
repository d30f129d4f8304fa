"""
Billing Router - API endpoints for Stripe billing integration
Checkout and portal endpoints answer with 303 redirects so plain HTML forms can post to them.
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Body, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_optional_user
from backend.utils.responses import error_response, result_response, success_response
from database import get_db
from services import stripe_client
from services.billing_service import BillingService
from services.webhook_service import StripeWebhookService

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])

# Stripe posts events here (configure the endpoint in the Stripe Dashboard)
stripe_webhook_router = APIRouter(prefix="/api/stripe", tags=["billing"])


def _stripe_unavailable():
    return error_response(
        "stripe_not_configured",
        status=503,
        message="Stripe is not configured",
    )


async def _redirect(action, *args):
    """Run a redirect-style billing action and turn its target into a 303."""
    if not BillingService.is_stripe_available():
        return _stripe_unavailable()
    try:
        url = await action(*args)
    except (RuntimeError, stripe.StripeError) as e:
        logger.error(f"Billing redirect action failed: {e}", exc_info=True)
        return error_response("billing_failed", status=502, message=str(e))
    return RedirectResponse(url=url, status_code=303)


@billing_router.get("/available")
async def billing_available():
    return success_response({"available": BillingService.is_stripe_available()})


@billing_router.post("/checkout/subscription")
async def checkout_subscription(
    price_id: str = Form(...),
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Redirect to Stripe Checkout for a subscription (or /login when signed out)."""
    return await _redirect(BillingService(db).create_subscription_checkout, user, price_id)


@billing_router.post("/checkout/donation")
async def checkout_donation(
    price_id: str = Form(...),
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Redirect to Stripe Checkout for a one-time donation."""
    return await _redirect(BillingService(db).create_donation_checkout, user, price_id)


@billing_router.post("/portal")
async def customer_portal(
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Redirect to the Stripe Customer Portal (or /pricing when the user never subscribed)."""
    return await _redirect(BillingService(db).open_customer_portal, user)


@billing_router.get("/subscription")
async def my_subscription(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return result_response(await BillingService(db).get_my_subscription(user), error_status=500)


@billing_router.get("/subscription/active")
async def my_subscription_active(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    active = await BillingService(db).has_active_subscription(user)
    return success_response({"active": active})


@billing_router.post("/subscription/cancel")
async def cancel_my_subscription(
    immediately: bool = Body(default=False, embed=True),
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cancel at period end unless immediately=true."""
    return result_response(await BillingService(db).cancel_my_subscription(user, immediately))


@billing_router.post("/subscription/resume")
async def resume_my_subscription(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return result_response(await BillingService(db).resume_my_subscription(user))


@billing_router.get("/donations")
async def my_donations(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return result_response(await BillingService(db).get_my_donations(user), error_status=500)


@billing_router.get("/donations/total")
async def my_total_donations(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Total donated in cents"""
    return result_response(await BillingService(db).get_my_total_donations(user), key="total", error_status=500)


@stripe_webhook_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle Stripe webhook events with signature verification.

    Returns 400 for missing or invalid signatures and 500 when a handler
    fails, so Stripe retries the delivery. Unhandled event types are
    acknowledged with 200.
    """
    if not stripe_client.is_stripe_configured():
        return JSONResponse(status_code=503, content={"error": "Stripe is not configured"})

    # Raw body is required for signature verification
    payload = await request.body()

    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.error("Missing Stripe-Signature header")
        return JSONResponse(status_code=400, content={"error": "Missing stripe-signature header"})

    try:
        event = stripe_client.construct_webhook_event(payload, signature)
    except (stripe.SignatureVerificationError, ValueError, RuntimeError) as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    try:
        await StripeWebhookService(db).process_event(event)
    except Exception as e:
        logger.error(f"Webhook handler failed for {event.get('type')}: {e}", exc_info=True)
        await db.rollback()
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    return JSONResponse(status_code=200, content={"received": True})
