"""
Server-side Stripe helpers.

Stripe is optional: check is_stripe_configured() before calling anything
else. Never expose the secret key to the client.
"""
import json
import logging
from typing import Optional, Union

import stripe

from config import settings

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2025-12-15.clover"
WEBHOOK_TOLERANCE_SECONDS = 300


def is_stripe_configured() -> bool:
    """True when STRIPE_SECRET_KEY is set. Use it to show/hide payment features."""
    return bool(settings.stripe_secret_key)


def get_stripe():
    """
    Return the stripe module configured with the secret key.
    Raises RuntimeError if Stripe is not configured.
    """
    if not is_stripe_configured():
        raise RuntimeError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    stripe.api_key = settings.stripe_secret_key
    stripe.api_version = STRIPE_API_VERSION
    return stripe


def to_plain(obj) -> Optional[dict]:
    """Convert a StripeObject into plain dicts/lists."""
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return obj


def create_checkout_session(
    price_id: str,
    success_url: str,
    cancel_url: str,
    customer_id: Optional[str] = None,
    customer_email: Optional[str] = None,
    mode: str = "subscription",
    metadata: Optional[dict] = None,
    trial_period_days: Optional[int] = None,
):
    """
    Create a Checkout Session for a single price.

    Example:
        session = create_checkout_session(
            price_id="price_xxx",
            customer_email=user["email"],
            success_url=f"{settings.app_url}/success",
            cancel_url=f"{settings.app_url}/pricing",
        )
        return RedirectResponse(session.url, status_code=303)
    """
    client = get_stripe()

    params = {
        "mode": mode,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": cancel_url,
    }
    if metadata:
        params["metadata"] = metadata

    # Customer id wins over email
    if customer_id:
        params["customer"] = customer_id
    elif customer_email:
        params["customer_email"] = customer_email

    if mode == "subscription" and trial_period_days:
        params["subscription_data"] = {"trial_period_days": trial_period_days}

    return client.checkout.Session.create(**params)


def create_portal_session(customer_id: str, return_url: str):
    """Customer Portal session so customers can manage their subscriptions."""
    client = get_stripe()
    return client.billing_portal.Session.create(customer=customer_id, return_url=return_url)


def get_or_create_customer(email: str, name: Optional[str] = None):
    """Return the first Stripe customer with this email, creating one if none exists."""
    client = get_stripe()

    existing = client.Customer.list(email=email, limit=1)
    if existing.data:
        return existing.data[0]

    params = {"email": email}
    if name:
        params["name"] = name
    return client.Customer.create(**params)


def cancel_subscription(subscription_id: str, immediately: bool = False):
    """
    Cancel a subscription. By default it cancels at period end so the user
    keeps access until the paid period runs out.
    """
    client = get_stripe()
    if immediately:
        return client.Subscription.cancel(subscription_id)
    return client.Subscription.modify(subscription_id, cancel_at_period_end=True)


def resume_subscription(subscription_id: str):
    """Undo a pending cancel-at-period-end."""
    client = get_stripe()
    return client.Subscription.modify(subscription_id, cancel_at_period_end=False)


def construct_webhook_event(payload: Union[bytes, str], signature: str) -> dict:
    """
    Verify the Stripe-Signature header and return the event as a plain dict.

    Raises:
        RuntimeError: STRIPE_WEBHOOK_SECRET is not set
        stripe.SignatureVerificationError: signature does not match
        ValueError: payload is not valid JSON
    """
    get_stripe()
    webhook_secret = settings.stripe_webhook_secret
    if not webhook_secret:
        raise RuntimeError("Missing STRIPE_WEBHOOK_SECRET environment variable")

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    stripe.WebhookSignature.verify_header(payload, signature, webhook_secret, WEBHOOK_TOLERANCE_SECONDS)
    return json.loads(payload)
