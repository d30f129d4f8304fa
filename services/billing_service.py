"""
Billing Service - checkout, customer portal and subscription management for the current user
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from crud.stripe import StripeRepository
from database_models import ACTIVE_SUBSCRIPTION_STATUSES, StripePayment, StripeSubscription
from services import stripe_client
from services.role_service import RoleService

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
PRICING_PATH = "/pricing"


def _iso(value):
    return value.isoformat() if value else None


def serialize_subscription(subscription: Optional[StripeSubscription]) -> Optional[dict]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "stripe_customer_id": subscription.stripe_customer_id,
        "stripe_price_id": subscription.stripe_price_id,
        "status": subscription.status,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "current_period_start": _iso(subscription.current_period_start),
        "current_period_end": _iso(subscription.current_period_end),
        "canceled_at": _iso(subscription.canceled_at),
        "trial_start": _iso(subscription.trial_start),
        "trial_end": _iso(subscription.trial_end),
        "metadata": subscription.metadata_ or {},
    }


def serialize_payment(payment: StripePayment) -> dict:
    return {
        "id": payment.id,
        "stripe_payment_intent_id": payment.stripe_payment_intent_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "payment_type": payment.payment_type.value if payment.payment_type else None,
        "description": payment.description,
        "created_at": _iso(payment.created_at),
    }


class BillingService:
    """
    Service class for handling billing-related business logic.
    All operations act on the authenticated user. Stripe is optional and
    every operation fails gracefully when it is not configured.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.stripe_repo = StripeRepository(db)
        self.roles = RoleService(db)

    @staticmethod
    def is_stripe_available() -> bool:
        return stripe_client.is_stripe_configured()

    async def _get_or_create_stripe_customer(self, user: dict) -> str:
        """Local mapping first, then Stripe (by email), then store the mapping."""
        existing = await self.stripe_repo.get_customer_by_user_id(user["user_id"])
        if existing:
            return existing.stripe_customer_id

        customer = stripe_client.get_or_create_customer(user["email"], user.get("name"))
        await self.stripe_repo.create_customer(
            user_id=user["user_id"],
            stripe_customer_id=customer.id,
            email=user["email"],
            name=user.get("name"),
        )
        return customer.id

    async def _create_checkout(self, user: Optional[dict], price_id: str, mode: str,
                               checkout_type: str, success_path: str, cancel_path: str) -> str:
        if not stripe_client.is_stripe_configured():
            raise RuntimeError("Stripe is not configured")

        if not user:
            return LOGIN_PATH

        await self.roles.ensure_user_profile(user["user_id"])

        app_url = settings.app_url.rstrip("/")
        customer_id = await self._get_or_create_stripe_customer(user)

        checkout_session = stripe_client.create_checkout_session(
            price_id=price_id,
            customer_id=customer_id,
            mode=mode,
            success_url=f"{app_url}{success_path}",
            cancel_url=f"{app_url}{cancel_path}",
            metadata={"userId": user["user_id"], "type": checkout_type},
        )

        if not checkout_session.url:
            raise RuntimeError("Failed to create checkout session")

        logger.info(f"Created {checkout_type} checkout for user {user['user_id']} (price {price_id})")
        return checkout_session.url

    async def create_subscription_checkout(self, user: Optional[dict], price_id: str) -> str:
        """
        Start a subscription checkout.

        Returns:
            URL to redirect to: the Stripe Checkout page, or /login for anonymous users

        Raises:
            RuntimeError: Stripe not configured or Stripe returned no URL
        """
        return await self._create_checkout(
            user, price_id,
            mode="subscription",
            checkout_type="subscription",
            success_path="/checkout/success",
            cancel_path=PRICING_PATH,
        )

    async def create_donation_checkout(self, user: Optional[dict], price_id: str) -> str:
        """Start a one-time donation checkout. Same contract as create_subscription_checkout."""
        return await self._create_checkout(
            user, price_id,
            mode="payment",
            checkout_type="donation",
            success_path="/donate/thank-you",
            cancel_path="/donate",
        )

    async def open_customer_portal(self, user: Optional[dict]) -> str:
        """
        Returns:
            URL of the Stripe Customer Portal, /login for anonymous users,
            or /pricing when the user has never been a Stripe customer
        """
        if not stripe_client.is_stripe_configured():
            raise RuntimeError("Stripe is not configured")

        if not user:
            return LOGIN_PATH

        customer = await self.stripe_repo.get_customer_by_user_id(user["user_id"])
        if customer is None:
            return PRICING_PATH

        portal_session = stripe_client.create_portal_session(
            customer_id=customer.stripe_customer_id,
            return_url=f"{settings.app_url.rstrip('/')}/account",
        )
        return portal_session.url

    async def get_my_subscription(self, user: Optional[dict]) -> dict:
        if not user:
            return {"error": "Not authenticated", "is_error": True}
        try:
            subscription = await self.stripe_repo.get_subscription_by_user_id(user["user_id"])
            return {"data": serialize_subscription(subscription), "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get subscription: {e}", exc_info=True)
            return {"error": "Failed to get subscription", "is_error": True}

    async def get_my_donations(self, user: Optional[dict]) -> dict:
        if not user:
            return {"error": "Not authenticated", "is_error": True}
        try:
            payments = await self.stripe_repo.list_payments_by_user_id(user["user_id"])
            return {"data": [serialize_payment(p) for p in payments], "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get donations: {e}", exc_info=True)
            return {"error": "Failed to get donations", "is_error": True}

    async def get_my_total_donations(self, user: Optional[dict]) -> dict:
        """Sum of the user's payment amounts in cents (0 when none)."""
        if not user:
            return {"error": "Not authenticated", "is_error": True}
        try:
            total = await self.stripe_repo.sum_payments_by_user_id(user["user_id"])
            return {"data": total, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to get total donations: {e}", exc_info=True)
            return {"error": "Failed to get total donations", "is_error": True}

    async def cancel_my_subscription(self, user: Optional[dict], immediately: bool = False) -> dict:
        """Cancel at period end by default; the user keeps access until the paid period ends."""
        if not stripe_client.is_stripe_configured():
            return {"error": "Stripe is not configured", "is_error": True}
        if not user:
            return {"error": "Not authenticated", "is_error": True}

        try:
            subscription = await self.stripe_repo.get_subscription_by_user_id(user["user_id"])
            if subscription is None:
                return {"error": "No subscription found", "is_error": True}

            stripe_client.cancel_subscription(subscription.stripe_subscription_id, immediately)
            logger.info(
                f"Cancelled subscription {subscription.stripe_subscription_id} "
                f"for user {user['user_id']} (immediately={immediately})"
            )
            return {"data": None, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to cancel subscription: {e}", exc_info=True)
            return {"error": "Failed to cancel subscription", "is_error": True}

    async def resume_my_subscription(self, user: Optional[dict]) -> dict:
        """Resume a subscription that was set to cancel at period end."""
        if not stripe_client.is_stripe_configured():
            return {"error": "Stripe is not configured", "is_error": True}
        if not user:
            return {"error": "Not authenticated", "is_error": True}

        try:
            subscription = await self.stripe_repo.get_subscription_by_user_id(user["user_id"])
            if subscription is None:
                return {"error": "No subscription found", "is_error": True}

            if not subscription.cancel_at_period_end:
                return {"error": "Subscription is not set to cancel", "is_error": True}

            stripe_client.resume_subscription(subscription.stripe_subscription_id)
            return {"data": None, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to resume subscription: {e}", exc_info=True)
            return {"error": "Failed to resume subscription", "is_error": True}

    async def has_active_subscription(self, user: Optional[dict]) -> bool:
        if not user:
            return False
        subscription = await self.stripe_repo.get_subscription_by_user_id(user["user_id"])
        if subscription is None:
            return False
        return subscription.status in ACTIVE_SUBSCRIPTION_STATUSES
