"""
Tests for Stripe webhook handling: event handlers and the signed endpoint
"""
import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from crud.stripe import StripeRepository
from crud.user_profile import UserProfileRepository
from database_models import PaymentType, UserPlan, UserRole
from services.webhook_service import StripeWebhookService, from_timestamp, invoice_subscription_id
from tests.conftest import TEST_WEBHOOK_SECRET

PERIOD_START = 1767225600
PERIOD_END = 1769904000


def sign(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does"""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def subscription_object(status="active", price="price_pro", customer="cus_1", **extra):
    subscription = {
        "id": "sub_1",
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": False,
        "metadata": {},
        "items": {"data": [{
            "price": {"id": price},
            "current_period_start": PERIOD_START,
            "current_period_end": PERIOD_END,
        }]},
    }
    subscription.update(extra)
    return subscription


def fake_stripe(customer=None, subscription=None):
    client = MagicMock()
    client.Customer.retrieve.return_value = customer or {"id": "cus_1", "email": "buyer@example.com", "name": "Buyer"}
    client.Subscription.retrieve.return_value = subscription or subscription_object()
    return client


def test_from_timestamp():
    assert from_timestamp(None) is None
    assert from_timestamp(0) is None
    assert from_timestamp(PERIOD_START).year == 2026


def test_invoice_subscription_id_handles_both_api_shapes():
    nested = {"parent": {"subscription_details": {"subscription": "sub_new"}}}
    assert invoice_subscription_id(nested) == "sub_new"
    assert invoice_subscription_id({"subscription": "sub_old"}) == "sub_old"
    assert invoice_subscription_id({"subscription": {"id": "sub_obj"}}) is None
    assert invoice_subscription_id({}) is None


@pytest.mark.asyncio
async def test_unhandled_event_is_ignored(test_db):
    handled = await StripeWebhookService(test_db).process_event({"type": "charge.refunded", "data": {"object": {}}})
    assert handled is False


@pytest.mark.asyncio
async def test_checkout_completed_with_subscription(test_db, make_user, stripe_configured):
    user = await make_user(email="buyer@example.com", profile={})
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "customer": "cus_1",
            "subscription": "sub_1",
            "metadata": {"userId": user.id, "type": "subscription"},
        }},
    }

    with patch("services.stripe_client.get_stripe", return_value=fake_stripe()):
        assert await StripeWebhookService(test_db).process_event(event) is True

    repo = StripeRepository(test_db)
    customer = await repo.get_customer_by_user_id(user.id)
    assert customer.stripe_customer_id == "cus_1"
    assert customer.email == "buyer@example.com"

    subscription = await repo.get_subscription("sub_1")
    assert subscription.user_id == user.id
    assert subscription.status == "active"
    assert subscription.stripe_price_id == "price_pro"
    assert subscription.current_period_end is not None

    profile = await UserProfileRepository(test_db).get_by_user_id(user.id)
    await test_db.refresh(profile)
    assert profile.plan == UserPlan.PRO


@pytest.mark.asyncio
async def test_checkout_completed_donation_is_recorded_once(test_db, make_user, stripe_configured):
    user = await make_user(profile={})
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "customer": "cus_1",
            "subscription": None,
            "payment_intent": "pi_1",
            "amount_total": 2500,
            "currency": "usd",
            "metadata": {"userId": user.id, "type": "donation"},
        }},
    }

    service = StripeWebhookService(test_db)
    with patch("services.stripe_client.get_stripe", return_value=fake_stripe()):
        await service.process_event(event)
        await service.process_event(event)

    payments = await StripeRepository(test_db).list_payments_by_user_id(user.id)
    assert len(payments) == 1
    assert payments[0].amount == 2500
    assert payments[0].payment_type == PaymentType.DONATION

    profile = await UserProfileRepository(test_db).get_by_user_id(user.id)
    await test_db.refresh(profile)
    assert profile.total_donations == 2500
    assert profile.lifetime_value == 2500


@pytest.mark.asyncio
async def test_checkout_completed_skips_deleted_customer_and_missing_user(test_db, stripe_configured):
    service = StripeWebhookService(test_db)
    deleted = fake_stripe(customer={"id": "cus_1", "deleted": True})
    with patch("services.stripe_client.get_stripe", return_value=deleted):
        await service.handle_checkout_session_completed({"customer": "cus_1", "metadata": {"userId": "u1"}})

    with patch("services.stripe_client.get_stripe", return_value=fake_stripe()):
        await service.handle_checkout_session_completed({"customer": "cus_1", "metadata": {}})

    assert await StripeRepository(test_db).get_customer_by_stripe_id("cus_1") is None


@pytest.mark.asyncio
async def test_subscription_update_resolves_plan_from_product_metadata(test_db, make_user):
    user = await make_user(profile={})
    repo = StripeRepository(test_db)
    await repo.create_customer(user.id, "cus_1")
    service = StripeWebhookService(test_db)

    await service.process_event({"type": "product.created", "data": {"object": {
        "id": "prod_ent", "name": "Enterprise", "active": True, "metadata": {"plan": "enterprise"},
    }}})
    await service.process_event({"type": "price.created", "data": {"object": {
        "id": "price_ent", "product": "prod_ent", "active": True, "currency": "usd",
        "unit_amount": 2999, "type": "recurring", "recurring": {"interval": "month", "interval_count": 1},
    }}})
    await service.process_event({
        "type": "customer.subscription.updated",
        "data": {"object": subscription_object(status="trialing", price="price_ent")},
    })

    price = await repo.get_price("price_ent")
    assert price.interval == "month"
    assert price.unit_amount == 2999
    assert await service.resolve_plan("price_ent") == UserPlan.ENTERPRISE
    assert await service.resolve_plan("price_unknown") == UserPlan.PRO

    profile = await UserProfileRepository(test_db).get_by_user_id(user.id)
    await test_db.refresh(profile)
    assert profile.plan == UserPlan.ENTERPRISE


@pytest.mark.asyncio
async def test_inactive_subscription_does_not_upgrade(test_db, make_user):
    user = await make_user(profile={})
    await StripeRepository(test_db).create_customer(user.id, "cus_1")

    await StripeWebhookService(test_db).handle_subscription_upsert(subscription_object(status="incomplete"))

    profile = await UserProfileRepository(test_db).get_by_user_id(user.id)
    await test_db.refresh(profile)
    assert profile.plan == UserPlan.FREE
    assert (await StripeRepository(test_db).get_subscription("sub_1")).status == "incomplete"


@pytest.mark.asyncio
async def test_subscription_for_unknown_customer_is_skipped(test_db):
    await StripeWebhookService(test_db).handle_subscription_upsert(subscription_object(customer="cus_unknown"))
    assert await StripeRepository(test_db).get_subscription("sub_1") is None


@pytest.mark.asyncio
async def test_subscription_deleted_downgrades_but_not_admins(test_db, make_user):
    user = await make_user(email="sub@example.com", profile={"plan": UserPlan.PRO})
    admin = await make_user(email="admin@example.com", profile={"role": UserRole.ADMIN, "plan": UserPlan.PRO})
    repo = StripeRepository(test_db)
    for owner, sub_id in ((user, "sub_user"), (admin, "sub_admin")):
        await repo.upsert_subscription(sub_id, owner.id, f"cus_{sub_id}", {"stripe_price_id": "price_pro", "status": "active"})

    service = StripeWebhookService(test_db)
    await service.process_event({"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_user"}}})
    await service.process_event({"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_admin"}}})

    subscription = await repo.get_subscription("sub_user")
    assert subscription.status == "canceled"
    assert subscription.canceled_at is not None

    profiles = UserProfileRepository(test_db)
    user_profile = await profiles.get_by_user_id(user.id)
    admin_profile = await profiles.get_by_user_id(admin.id)
    await test_db.refresh(user_profile)
    await test_db.refresh(admin_profile)
    assert user_profile.plan == UserPlan.FREE
    assert admin_profile.plan == UserPlan.PRO


@pytest.mark.asyncio
async def test_invoice_events_update_status(test_db, make_user):
    user = await make_user()
    repo = StripeRepository(test_db)
    await repo.upsert_subscription("sub_1", user.id, "cus_1", {"stripe_price_id": "price_pro", "status": "active"})
    service = StripeWebhookService(test_db)

    await service.process_event({"type": "invoice.payment_failed", "data": {"object": {"subscription": "sub_1"}}})
    assert (await repo.get_subscription("sub_1")).status == "past_due"

    await service.process_event({"type": "invoice.paid", "data": {"object": {
        "parent": {"subscription_details": {"subscription": "sub_1"}},
    }}})
    assert (await repo.get_subscription("sub_1")).status == "active"

    # Unknown subscriptions are ignored
    await service.process_event({"type": "invoice.paid", "data": {"object": {"subscription": "sub_missing"}}})


@pytest.mark.asyncio
async def test_webhook_endpoint_without_stripe(client):
    response = await client.post("/api/stripe/webhook", content="{}")
    assert response.status_code == 503
    assert response.json() == {"error": "Stripe is not configured"}


@pytest.mark.asyncio
async def test_webhook_endpoint_rejects_missing_and_bad_signatures(client, stripe_configured):
    payload = json.dumps({"id": "evt_1", "type": "charge.refunded", "data": {"object": {}}})

    missing = await client.post("/api/stripe/webhook", content=payload)
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing stripe-signature header"}

    forged = await client.post(
        "/api/stripe/webhook",
        content=payload,
        headers={"stripe-signature": sign(payload, secret="whsec_wrong")},
    )
    assert forged.status_code == 400
    assert forged.json() == {"error": "Invalid signature"}

    stale = await client.post(
        "/api/stripe/webhook",
        content=payload,
        headers={"stripe-signature": sign(payload, timestamp=int(time.time()) - 3600)},
    )
    assert stale.status_code == 400


@pytest.mark.asyncio
async def test_webhook_endpoint_processes_signed_event(client, test_db, stripe_configured):
    payload = json.dumps({"id": "evt_2", "type": "product.updated", "data": {"object": {
        "id": "prod_1", "name": "Pro Plan", "active": True, "metadata": {"plan": "pro"},
    }}})

    response = await client.post("/api/stripe/webhook", content=payload, headers={"stripe-signature": sign(payload)})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    product = await StripeRepository(test_db).get_product("prod_1")
    assert product.name == "Pro Plan"


@pytest.mark.asyncio
async def test_webhook_endpoint_acknowledges_unhandled_events(client, stripe_configured):
    payload = json.dumps({"id": "evt_3", "type": "charge.refunded", "data": {"object": {}}})
    response = await client.post("/api/stripe/webhook", content=payload, headers={"stripe-signature": sign(payload)})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_webhook_endpoint_handler_failure_returns_500(client, stripe_configured):
    payload = json.dumps({"id": "evt_4", "type": "invoice.paid", "data": {"object": {}}})

    with patch.object(StripeWebhookService, "process_event", AsyncMock(side_effect=RuntimeError("boom"))):
        response = await client.post(
            "/api/stripe/webhook", content=payload, headers={"stripe-signature": sign(payload)}
        )

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook handler failed"}
