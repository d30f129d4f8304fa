"""
StripeRepository for the locally mirrored Stripe tables
(customers, products, prices, subscriptions, payments)
"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from database_models import (
    StripeCustomer,
    StripePayment,
    StripePrice,
    StripeProduct,
    StripeSubscription,
    utcnow,
)


class StripeRepository:
    """
    Repository class for Stripe rows.
    Upserts are select-then-write so they behave the same on SQLite and PostgreSQL.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _first(self, stmt):
        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def _save(self, row, fields: dict, is_new: bool):
        for key, value in fields.items():
            setattr(row, key, value)
        if is_new:
            self.db.add(row)
        else:
            row.updated_at = utcnow()
        await self.db.flush()
        return row

    # Customers

    async def get_customer_by_user_id(self, user_id: str) -> Optional[StripeCustomer]:
        return await self._first(select(StripeCustomer).where(StripeCustomer.user_id == user_id))

    async def get_customer_by_stripe_id(self, stripe_customer_id: str) -> Optional[StripeCustomer]:
        return await self._first(
            select(StripeCustomer).where(StripeCustomer.stripe_customer_id == stripe_customer_id)
        )

    async def create_customer(self, user_id: str, stripe_customer_id: str,
                              email: Optional[str] = None, name: Optional[str] = None) -> StripeCustomer:
        customer = StripeCustomer(user_id=user_id)
        return await self._save(
            customer,
            {"stripe_customer_id": stripe_customer_id, "email": email, "name": name},
            is_new=True,
        )

    async def upsert_customer(self, user_id: str, stripe_customer_id: str,
                              email: Optional[str] = None, name: Optional[str] = None) -> StripeCustomer:
        """Insert or update the customer row keyed by user_id."""
        customer = await self.get_customer_by_user_id(user_id)
        fields = {"stripe_customer_id": stripe_customer_id, "email": email, "name": name}
        if customer is None:
            return await self._save(StripeCustomer(user_id=user_id), fields, is_new=True)
        return await self._save(customer, fields, is_new=False)

    # Products & prices

    async def get_product(self, stripe_product_id: str) -> Optional[StripeProduct]:
        return await self._first(
            select(StripeProduct).where(StripeProduct.stripe_product_id == stripe_product_id)
        )

    async def upsert_product(self, stripe_product_id: str, fields: dict) -> StripeProduct:
        product = await self.get_product(stripe_product_id)
        if product is None:
            return await self._save(StripeProduct(stripe_product_id=stripe_product_id), fields, is_new=True)
        return await self._save(product, fields, is_new=False)

    async def get_price(self, stripe_price_id: str) -> Optional[StripePrice]:
        return await self._first(
            select(StripePrice).where(StripePrice.stripe_price_id == stripe_price_id)
        )

    async def upsert_price(self, stripe_price_id: str, fields: dict) -> StripePrice:
        price = await self.get_price(stripe_price_id)
        if price is None:
            return await self._save(StripePrice(stripe_price_id=stripe_price_id), fields, is_new=True)
        return await self._save(price, fields, is_new=False)

    # Subscriptions

    async def get_subscription_by_user_id(self, user_id: str) -> Optional[StripeSubscription]:
        return await self._first(
            select(StripeSubscription).where(StripeSubscription.user_id == user_id)
        )

    async def get_subscription(self, stripe_subscription_id: str) -> Optional[StripeSubscription]:
        return await self._first(
            select(StripeSubscription).where(
                StripeSubscription.stripe_subscription_id == stripe_subscription_id
            )
        )

    async def upsert_subscription(self, stripe_subscription_id: str, user_id: str,
                                  stripe_customer_id: str, fields: dict) -> StripeSubscription:
        """
        Insert or update a subscription keyed by its Stripe id.
        user_id and stripe_customer_id are only written on insert.
        """
        subscription = await self.get_subscription(stripe_subscription_id)
        if subscription is None:
            row = StripeSubscription(
                stripe_subscription_id=stripe_subscription_id,
                user_id=user_id,
                stripe_customer_id=stripe_customer_id,
            )
            return await self._save(row, fields, is_new=True)
        return await self._save(subscription, fields, is_new=False)

    async def update_subscription(self, stripe_subscription_id: str, fields: dict) -> Optional[StripeSubscription]:
        """Update an existing subscription; returns None when it isn't mirrored locally."""
        subscription = await self.get_subscription(stripe_subscription_id)
        if subscription is None:
            return None
        return await self._save(subscription, fields, is_new=False)

    # Payments

    async def get_payment(self, stripe_payment_intent_id: str) -> Optional[StripePayment]:
        return await self._first(
            select(StripePayment).where(StripePayment.stripe_payment_intent_id == stripe_payment_intent_id)
        )

    async def insert_payment_if_missing(self, stripe_payment_intent_id: str, fields: dict) -> bool:
        """
        Insert a payment unless one already exists for the payment intent.

        Returns:
            True if a row was inserted, False if it was a duplicate
        """
        if await self.get_payment(stripe_payment_intent_id) is not None:
            return False
        await self._save(StripePayment(stripe_payment_intent_id=stripe_payment_intent_id), fields, is_new=True)
        return True

    async def list_payments_by_user_id(self, user_id: str) -> List[StripePayment]:
        result = await self.db.execute(
            select(StripePayment)
            .where(StripePayment.user_id == user_id)
            .order_by(StripePayment.created_at.desc())
        )
        return list(result.scalars().all())

    async def sum_payments_by_user_id(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(StripePayment.amount), 0)).where(StripePayment.user_id == user_id)
        )
        return int(result.scalar_one())
