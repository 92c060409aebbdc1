"""
Stripe webhooks:
- signature verification gate
- subscription created/updated/deleted handlers
- Connect account.updated mirrored into the company finance record
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from conftest import build_app

SIGNED = {"stripe-signature": "t=1,v1=abc"}


def _event(event_type, obj):
    return {"type": event_type, "data": {"object": obj}}


@pytest.fixture
def billing():
    fake = MagicMock()
    fake.plan_for_price.side_effect = lambda price_id: {"price_free": "FREE", "price_pro": "PRO", "price_gift": "PRO"}.get(price_id)
    fake.get_products = AsyncMock(return_value=[
        {"price_id": "price_free", "name": "Free", "amount": 0},
        {"price_id": "price_pro", "name": "Pro", "amount": 12.0},
    ])
    return fake


@pytest.fixture
def webhook_client(monkeypatch, fake_repos, billing):
    import settings
    from routes import webhooks

    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(settings, "STRIPE_PRO_GIFT_PRICE_ID", "price_gift")
    with patch("routes.webhooks.repos", fake_repos), patch("routes.webhooks.billing_service", billing):
        yield TestClient(build_app(webhooks.router))


def test_missing_signature_is_rejected(webhook_client, fake_repos):
    response = webhook_client.post("/api/webhook", content=b"{}")
    assert response.status_code == 500
    fake_repos.subscription.update_by_customer_id.assert_not_awaited()


def test_bad_signature_is_rejected(webhook_client, billing):
    billing.construct_event.side_effect = ValueError("No signatures found matching the expected signature")
    response = webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)
    assert response.status_code == 500
    assert response.json()["error"] == "Internal Server Error"


def test_missing_secret_is_rejected(webhook_client, monkeypatch, billing):
    import settings

    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    response = webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)
    assert response.status_code == 500
    billing.construct_event.assert_not_called()


def test_subscription_created_and_deleted_set_status(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _event("customer.subscription.created", {"customer": "cus_1"})
    assert webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED).json() == {"received": True}
    fake_repos.subscription.update_by_customer_id.assert_awaited_with("cus_1", {"status": "ACTIVE"})

    billing.construct_event.return_value = _event("customer.subscription.deleted", {"customer": "cus_1"})
    webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)
    fake_repos.subscription.update_by_customer_id.assert_awaited_with("cus_1", {"status": "CANCELED"})


def test_handler_payload_error_is_500(webhook_client, billing):
    billing.construct_event.return_value = _event("customer.subscription.created", {})
    response = webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)
    assert response.status_code == 500


def test_unhandled_event_is_acknowledged(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _event("invoice.paid", {"customer": "cus_1"})
    assert webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED).json() == {"received": True}
    fake_repos.subscription.update_by_customer_id.assert_not_awaited()


def _updated(price_id):
    return _event(
        "customer.subscription.updated",
        {"customer": "cus_1", "items": {"data": [{"price": {"id": price_id}}]}},
    )


def test_subscription_updated_syncs_plan_and_invoices_paid_plans(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _updated("price_pro")
    subscription = {"subscription_id": "s1", "user_id": "user-1"}
    fake_repos.subscription.update_by_customer_id.return_value = subscription
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "email": "user@example.com"}

    email = MagicMock()
    email.is_email_enabled.return_value = True
    email.send_template = AsyncMock()
    invoice = AsyncMock()
    with patch("routes.webhooks.email_service", email), patch("routes.webhooks.email_invoice", invoice):
        response = webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)

    assert response.json() == {"received": True}
    fake_repos.subscription.update_by_customer_id.assert_awaited_once_with(
        "cus_1", {"status": "ACTIVE", "plan": "PRO"}
    )
    assert email.send_template.await_args[0][0] == "user@example.com"
    invoice.assert_awaited_once()
    assert invoice.await_args.kwargs["plan"]["name"] == "Pro"


def test_subscription_updated_to_free_sends_no_invoice(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _updated("price_free")
    fake_repos.subscription.update_by_customer_id.return_value = {"subscription_id": "s1", "user_id": "user-1"}
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "email": "user@example.com"}

    email = MagicMock()
    email.is_email_enabled.return_value = True
    email.send_template = AsyncMock()
    invoice = AsyncMock()
    with patch("routes.webhooks.email_service", email), patch("routes.webhooks.email_invoice", invoice):
        webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)

    email.send_template.assert_awaited_once()
    invoice.assert_not_awaited()


def test_gift_and_unknown_prices_are_ignored(webhook_client, billing, fake_repos):
    for price_id in ("price_gift", "price_unknown"):
        billing.construct_event.return_value = _updated(price_id)
        assert webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED).json() == {"received": True}
    fake_repos.subscription.update_by_customer_id.assert_not_awaited()


def test_email_failures_do_not_fail_the_webhook(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _updated("price_pro")
    fake_repos.subscription.update_by_customer_id.return_value = {"subscription_id": "s1", "user_id": "user-1"}
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "email": "user@example.com"}

    email = MagicMock()
    email.is_email_enabled.return_value = True
    email.send_template = AsyncMock(side_effect=RuntimeError("postmark down"))
    with patch("routes.webhooks.email_service", email):
        response = webhook_client.post("/api/webhook", content=b"{}", headers=SIGNED)

    assert response.status_code == 200


def test_connect_account_updated_mirrors_status(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _event("account.updated", {
        "id": "acct_123",
        "metadata": {"company_id": "c1"},
        "details_submitted": True,
        "charges_enabled": True,
        "payouts_enabled": False,
        "requirements": {"currently_due": ["external_account"], "eventually_due": []},
    })

    response = webhook_client.post("/api/stripe/webhook", content=b"{}", headers=SIGNED)

    assert response.json() == {"received": True}
    fake_repos.company_finance.update_by_company_id.assert_awaited_once_with("c1", {
        "stripe_account_id": "acct_123",
        "details_submitted": True,
        "charges_enabled": True,
        "payouts_enabled": False,
        "requirements_due": ["external_account"],
        "requirements_due_soon": [],
    })


def test_connect_account_without_company_is_ignored(webhook_client, billing, fake_repos):
    billing.construct_event.return_value = _event("account.updated", {"id": "acct_123", "metadata": {}})
    webhook_client.post("/api/stripe/webhook", content=b"{}", headers=SIGNED)
    fake_repos.company_finance.update_by_company_id.assert_not_awaited()
