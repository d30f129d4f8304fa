"""
Stripe Webhook Service - maps Stripe events onto local customer, subscription,
payment, catalog and user plan rows.

Events to enable in the Stripe Dashboard (endpoint: /api/stripe/webhook):
- checkout.session.completed
- customer.subscription.created / updated / deleted
- invoice.paid / invoice.payment_failed
- product.created / updated
- price.created / updated
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from crud.stripe import StripeRepository
from database_models import ACTIVE_SUBSCRIPTION_STATUSES, PaymentType, UserPlan, utcnow
from services import stripe_client
from services.role_service import RoleService

logger = logging.getLogger(__name__)

PAID_PLANS = (UserPlan.PRO.value, UserPlan.ENTERPRISE.value)
DEFAULT_PAID_PLAN = UserPlan.PRO


def from_timestamp(value) -> Optional[datetime]:
    """Stripe unix seconds -> aware datetime"""
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _id_of(value) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """
    Subscription id of an invoice. Newer API versions nest it under
    parent.subscription_details; older ones expose a top-level field.
    """
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    subscription_id = details.get("subscription")
    if isinstance(subscription_id, str):
        return subscription_id
    top_level = invoice.get("subscription")
    return top_level if isinstance(top_level, str) else None


class StripeWebhookService:
    """
    Service class applying verified Stripe events to the database.
    Handlers raise on failure so the endpoint can answer 500 and Stripe retries.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.stripe_repo = StripeRepository(db)
        self.roles = RoleService(db)

    async def process_event(self, event: dict) -> bool:
        """
        Dispatch an event to its handler.

        Args:
            event: Verified event as a plain dict (type, data.object)

        Returns:
            True if the event type is handled, False if it was ignored
        """
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"Processing Stripe webhook event: {event_type}")

        if event_type == "checkout.session.completed":
            await self.handle_checkout_session_completed(obj)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            await self.handle_subscription_upsert(obj)
        elif event_type == "customer.subscription.deleted":
            await self.handle_subscription_deleted(obj)
        elif event_type == "invoice.paid":
            await self.handle_invoice_paid(obj)
        elif event_type == "invoice.payment_failed":
            await self.handle_invoice_payment_failed(obj)
        elif event_type in ("product.created", "product.updated"):
            await self.handle_product_upsert(obj)
        elif event_type in ("price.created", "price.updated"):
            await self.handle_price_upsert(obj)
        else:
            logger.info(f"Unhandled event type: {event_type}")
            return False
        return True

    async def handle_checkout_session_completed(self, session: dict) -> None:
        """
        Checkout finished: store the customer, then either sync the new
        subscription or record the donation.
        """
        customer_id = _id_of(session.get("customer"))
        subscription_id = _id_of(session.get("subscription"))

        customer = stripe_client.to_plain(stripe_client.get_stripe().Customer.retrieve(customer_id))
        if customer.get("deleted"):
            return

        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        if not user_id:
            logger.error("No userId in checkout session metadata")
            return

        await self.stripe_repo.upsert_customer(
            user_id=user_id,
            stripe_customer_id=customer_id,
            email=customer.get("email"),
            name=customer.get("name"),
        )

        if subscription_id:
            subscription = stripe_client.to_plain(
                stripe_client.get_stripe().Subscription.retrieve(subscription_id)
            )
            await self.handle_subscription_upsert(subscription, user_id=user_id)
        elif metadata.get("type") == "donation":
            payment_intent_id = _id_of(session.get("payment_intent"))
            amount_total = session.get("amount_total")
            if payment_intent_id and amount_total:
                inserted = await self.stripe_repo.insert_payment_if_missing(
                    payment_intent_id,
                    {
                        "user_id": user_id,
                        "stripe_customer_id": customer_id,
                        "amount": amount_total,
                        "currency": session.get("currency") or "usd",
                        "status": "succeeded",
                        "payment_type": PaymentType.DONATION,
                        "description": "Donation",
                        "metadata_": dict(metadata),
                    },
                )
                # Redelivered events must not count the donation twice
                if inserted:
                    await self.roles.record_donation(user_id, amount_total)

    async def handle_subscription_upsert(self, subscription: dict, user_id: Optional[str] = None) -> None:
        """Mirror a subscription and sync the owner's plan while it is active or trialing."""
        stripe_customer_id = _id_of(subscription.get("customer"))

        if not user_id:
            customer = await self.stripe_repo.get_customer_by_stripe_id(stripe_customer_id)
            user_id = customer.user_id if customer else None
            if not user_id:
                logger.error(f"No user found for subscription: {subscription.get('id')}")
                return

        items = (subscription.get("items") or {}).get("data") or []
        first_item = items[0] if items else None
        price_id = _id_of((first_item or {}).get("price"))
        if not price_id:
            return

        # Period bounds live on the item in newer API versions
        period_start = first_item.get("current_period_start") or subscription.get("current_period_start")
        period_end = first_item.get("current_period_end") or subscription.get("current_period_end")

        status = subscription.get("status")
        await self.stripe_repo.upsert_subscription(
            stripe_subscription_id=subscription["id"],
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            fields={
                "stripe_price_id": price_id,
                "status": status,
                "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
                "current_period_start": from_timestamp(period_start),
                "current_period_end": from_timestamp(period_end),
                "canceled_at": from_timestamp(subscription.get("canceled_at")),
                "trial_start": from_timestamp(subscription.get("trial_start")),
                "trial_end": from_timestamp(subscription.get("trial_end")),
                "metadata_": dict(subscription.get("metadata") or {}),
            },
        )

        if status in ACTIVE_SUBSCRIPTION_STATUSES:
            plan = await self.resolve_plan(price_id)
            await self.roles.upgrade_plan(user_id, plan)

    async def resolve_plan(self, price_id: str) -> UserPlan:
        """
        Plan tier from the product's metadata.plan (set it on your Stripe
        products). Falls back to pro.
        """
        price = await self.stripe_repo.get_price(price_id)
        if price is None:
            return DEFAULT_PAID_PLAN

        product = await self.stripe_repo.get_product(price.stripe_product_id)
        plan = ((product.metadata_ or {}) if product else {}).get("plan")
        if plan in PAID_PLANS:
            return UserPlan(plan)
        return DEFAULT_PAID_PLAN

    async def handle_subscription_deleted(self, subscription: dict) -> None:
        existing = await self.stripe_repo.get_subscription(subscription["id"])

        await self.stripe_repo.update_subscription(
            subscription["id"],
            {"status": "canceled", "canceled_at": utcnow()},
        )

        if existing is not None and existing.user_id:
            await self.roles.downgrade_plan(existing.user_id)

    async def handle_invoice_paid(self, invoice: dict) -> None:
        """Recurring payment succeeded: keep access provisioned."""
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return
        await self.stripe_repo.update_subscription(subscription_id, {"status": "active"})

    async def handle_invoice_payment_failed(self, invoice: dict) -> None:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return
        await self.stripe_repo.update_subscription(subscription_id, {"status": "past_due"})
        # TODO: email the customer asking them to update their payment method
        logger.warning(f"Invoice payment failed for subscription {subscription_id}")

    async def handle_product_upsert(self, product: dict) -> None:
        await self.stripe_repo.upsert_product(
            product["id"],
            {
                "name": product.get("name") or "",
                "description": product.get("description"),
                "active": bool(product.get("active", True)),
                "metadata_": dict(product.get("metadata") or {}),
            },
        )

    async def handle_price_upsert(self, price: dict) -> None:
        recurring = price.get("recurring") or {}
        await self.stripe_repo.upsert_price(
            price["id"],
            {
                "stripe_product_id": _id_of(price.get("product")),
                "active": bool(price.get("active", True)),
                "currency": price.get("currency"),
                "unit_amount": price.get("unit_amount"),
                "type": price.get("type"),
                "interval": recurring.get("interval"),
                "interval_count": recurring.get("interval_count"),
                "trial_period_days": recurring.get("trial_period_days"),
                "metadata_": dict(price.get("metadata") or {}),
            },
        )
