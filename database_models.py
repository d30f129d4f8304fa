"""
Database models: auth users and OAuth accounts, user profiles (role/plan),
and Stripe billing rows synced from webhooks.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    """Permission level."""
    ADMIN = "admin"
    USER = "user"


class UserPlan(str, enum.Enum):
    """Subscription tier. Paid tiers are set from Stripe product metadata.plan."""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class PaymentType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    DONATION = "donation"
    ONE_TIME = "one_time"


def _enum_column(enum_cls, name):
    # Persist the lowercase values rather than the member names
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


# ============================================================================
# AUTH
# ============================================================================

class User(Base):
    """Authenticated user. Created on first OAuth sign-in."""
    __tablename__ = "user"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, default="")
    email = Column(String, unique=True, nullable=False, index=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    image = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Account(Base):
    """Link between a user and an OAuth provider identity."""
    __tablename__ = "account"
    __table_args__ = (UniqueConstraint("provider_id", "account_id", name="uq_account_provider"),)

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(String, nullable=False)
    account_id = Column(String, nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    scope = Column(String, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# ============================================================================
# USER PROFILE
# ============================================================================

class UserProfile(Base):
    """
    Extended user data: profile fields, role (permissions) and plan
    (subscription tier), plus payment totals for quick access without
    joining the Stripe tables.
    """
    __tablename__ = "user_profile"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), unique=True, nullable=False)

    bio = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    website = Column(String, nullable=True)

    role = Column(_enum_column(UserRole, "user_role"), nullable=False, default=UserRole.USER)
    plan = Column(_enum_column(UserPlan, "user_plan"), nullable=False, default=UserPlan.FREE)

    # in cents
    total_donations = Column(Integer, nullable=False, default=0)
    lifetime_value = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# ============================================================================
# STRIPE
# ============================================================================

class StripeCustomer(Base):
    """One-to-one link between a user and a Stripe customer."""
    __tablename__ = "stripe_customer"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), unique=True, nullable=False)
    stripe_customer_id = Column(String, unique=True, nullable=False)
    email = Column(String, nullable=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class StripeProduct(Base):
    """Product catalog synced from Stripe."""
    __tablename__ = "stripe_product"

    id = Column(String, primary_key=True, default=new_id)
    stripe_product_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class StripePrice(Base):
    """Prices synced from Stripe. type is "recurring" or "one_time"."""
    __tablename__ = "stripe_price"

    id = Column(String, primary_key=True, default=new_id)
    stripe_price_id = Column(String, unique=True, nullable=False)
    stripe_product_id = Column(
        String,
        ForeignKey("stripe_product.stripe_product_id", ondelete="CASCADE"),
        nullable=False,
    )
    active = Column(Boolean, nullable=False, default=True)
    currency = Column(String, nullable=False)
    unit_amount = Column(Integer, nullable=True)
    type = Column(String, nullable=False)
    interval = Column(String, nullable=True)
    interval_count = Column(Integer, nullable=True)
    trial_period_days = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


SUBSCRIPTION_STATUSES = (
    "active",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "past_due",
    "paused",
    "trialing",
    "unpaid",
)

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


class StripeSubscription(Base):
    __tablename__ = "stripe_subscription"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=False)
    stripe_customer_id = Column(String, nullable=False)
    stripe_price_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class StripePayment(Base):
    """One-time payments, including donations."""
    __tablename__ = "stripe_payment"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_payment_intent_id = Column(String, unique=True, nullable=False)
    stripe_customer_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False)
    payment_type = Column(_enum_column(PaymentType, "payment_type"), nullable=False, default=PaymentType.ONE_TIME)
    description = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
