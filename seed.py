"""
Database seed script

Populates the database with sample data for development.
Safe to run multiple times: rows whose id already exists are skipped.

Usage:
    python seed.py
"""

import asyncio
import logging
from datetime import timedelta
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from database import AsyncSessionLocal, close_connection, init_db
from database_models import (
    PaymentType,
    StripeCustomer,
    StripePayment,
    StripePrice,
    StripeProduct,
    StripeSubscription,
    User,
    UserPlan,
    UserProfile,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

# Deterministic ids make re-runs idempotent
IDS = {
    "admin_user": "seed_user_admin",
    "regular_user": "seed_user_regular",
    "paid_user": "seed_user_paid",
    "admin_profile": "00000000-0000-4000-8000-000000000001",
    "regular_profile": "00000000-0000-4000-8000-000000000002",
    "paid_profile": "00000000-0000-4000-8000-000000000003",
    "pro_plan": "seed_product_pro",
    "enterprise_plan": "seed_product_enterprise",
    "pro_monthly": "seed_price_pro_monthly",
    "pro_yearly": "seed_price_pro_yearly",
    "enterprise_monthly": "seed_price_enterprise_monthly",
    "stripe_customer": "seed_stripe_customer",
    "subscription": "seed_subscription",
    "payment": "seed_payment",
}


def build_seed_rows() -> Dict[str, List]:
    """Rows grouped by table, in insert order."""
    now = utcnow()

    return {
        "users": [
            User(id=IDS["admin_user"], name="Admin User", email="admin@example.com", email_verified=True),
            User(id=IDS["regular_user"], name="Jane Doe", email="jane@example.com", email_verified=True),
            User(id=IDS["paid_user"], name="Pro User", email="pro@example.com", email_verified=True),
        ],
        "profiles": [
            UserProfile(
                id=IDS["admin_profile"],
                user_id=IDS["admin_user"],
                role=UserRole.ADMIN,
                plan=UserPlan.FREE,
                bio="System administrator",
            ),
            UserProfile(
                id=IDS["regular_profile"],
                user_id=IDS["regular_user"],
                role=UserRole.USER,
                plan=UserPlan.FREE,
                bio="Regular user account",
                location="San Francisco, CA",
                total_donations=500,  # matches the seeded $5.00 donation
                lifetime_value=500,
            ),
            UserProfile(
                id=IDS["paid_profile"],
                user_id=IDS["paid_user"],
                role=UserRole.USER,
                plan=UserPlan.PRO,
                bio="Pro plan subscriber",
                lifetime_value=999,
            ),
        ],
        "products": [
            StripeProduct(
                id=IDS["pro_plan"],
                stripe_product_id="prod_seed_pro",
                name="Pro Plan",
                description="Full access to all features",
                active=True,
                metadata_={"plan": "pro"},
            ),
            StripeProduct(
                id=IDS["enterprise_plan"],
                stripe_product_id="prod_seed_enterprise",
                name="Enterprise Plan",
                description="Priority support and custom integrations",
                active=True,
                metadata_={"plan": "enterprise"},
            ),
        ],
        "prices": [
            StripePrice(
                id=IDS["pro_monthly"],
                stripe_price_id="price_seed_pro_monthly",
                stripe_product_id="prod_seed_pro",
                active=True,
                currency="usd",
                unit_amount=999,
                type="recurring",
                interval="month",
                interval_count=1,
            ),
            StripePrice(
                id=IDS["pro_yearly"],
                stripe_price_id="price_seed_pro_yearly",
                stripe_product_id="prod_seed_pro",
                active=True,
                currency="usd",
                unit_amount=9999,
                type="recurring",
                interval="year",
                interval_count=1,
            ),
            StripePrice(
                id=IDS["enterprise_monthly"],
                stripe_price_id="price_seed_enterprise_monthly",
                stripe_product_id="prod_seed_enterprise",
                active=True,
                currency="usd",
                unit_amount=2999,
                type="recurring",
                interval="month",
                interval_count=1,
            ),
        ],
        "customers": [
            StripeCustomer(
                id=IDS["stripe_customer"],
                user_id=IDS["paid_user"],
                stripe_customer_id="cus_seed_001",
                email="pro@example.com",
                name="Pro User",
            ),
        ],
        "subscriptions": [
            StripeSubscription(
                id=IDS["subscription"],
                user_id=IDS["paid_user"],
                stripe_subscription_id="sub_seed_001",
                stripe_customer_id="cus_seed_001",
                stripe_price_id="price_seed_pro_monthly",
                status="active",
                cancel_at_period_end=False,
                current_period_start=now,
                current_period_end=now + timedelta(days=30),
            ),
        ],
        "payments": [
            StripePayment(
                id=IDS["payment"],
                user_id=IDS["regular_user"],
                stripe_payment_intent_id="pi_seed_donation_001",
                amount=500,
                currency="usd",
                status="succeeded",
                payment_type=PaymentType.DONATION,
                description="Thank you donation",
            ),
        ],
    }


async def seed(db: AsyncSession) -> Dict[str, int]:
    """
    Insert the sample rows that don't exist yet.

    Returns:
        Number of inserted rows per table group
    """
    inserted = {}
    for group, rows in build_seed_rows().items():
        count = 0
        for row in rows:
            if await db.get(type(row), row.id) is not None:
                continue
            db.add(row)
            count += 1
        # Flush per group so foreign keys see their parents
        await db.flush()
        inserted[group] = count
        logger.info(f"  {group}: {count} inserted, {len(rows) - count} skipped")
    return inserted


async def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logger.info("Seeding database...")

    await init_db()
    try:
        async with AsyncSessionLocal() as session:
            try:
                await seed(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await close_connection()

    logger.info(
        "Seed complete: 3 users, 3 profiles, 2 products, 3 prices, 1 customer, 1 subscription, 1 payment"
    )


if __name__ == "__main__":
    asyncio.run(main())
