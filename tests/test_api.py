"""HTTP level tests for the usage, subscription, webhook and maintenance routes."""

import hashlib
import hmac
import json
import time
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_current_user_id, get_db
from app.main import app
from app.services.exceptions import StoreUnavailableError
from app.services.usage_gate import UsageGate
from app.utils.dates import utcnow

CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def client(db, user_id):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user_id] = lambda: user_id
    yield TestClient(app)
    app.dependency_overrides.clear()


def _next_week():
    return utcnow() + timedelta(days=7)


def _signed(payload: str, secret: str = "whsec_test") -> str:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


# =============================================================================
# Usage
# =============================================================================


class TestUsageRoutes:
    def test_check_limit_for_free_user(self, client):
        response = client.get("/api/v1/usage/check-limit")

        assert response.status_code == 200
        assert response.json() == {
            "can_generate": False,
            "remaining": 0,
            "limit": 0,
            "reset_date": None,
        }

    def test_check_limit_for_subscriber(self, client, make_entitlement, user_id):
        make_entitlement(user_id=user_id, plan="pro", used=100, period_end=_next_week())

        body = client.get("/api/v1/usage/check-limit").json()

        assert body["can_generate"] is True
        assert body["remaining"] == 400
        assert body["limit"] == 500
        assert body["reset_date"] is not None

    def test_check_limit_fails_closed(self, client, monkeypatch):
        def broken(self, user_id, now=None):
            raise StoreUnavailableError("database is down")

        monkeypatch.setattr(UsageGate, "check_limit", broken)

        response = client.get("/api/v1/usage/check-limit")

        assert response.status_code == 500
        assert response.json()["can_generate"] is False
        assert response.json()["remaining"] == 0

    def test_check_limit_fails_closed_on_unexpected_error(self, client, monkeypatch):
        def broken(self, user_id, now=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(UsageGate, "check_limit", broken)

        response = client.get("/api/v1/usage/check-limit")

        assert response.status_code == 500
        assert response.json() == {
            "can_generate": False,
            "remaining": 0,
            "limit": 0,
            "reset_date": None,
        }

    def test_consume_fails_closed_on_unexpected_error(self, client, monkeypatch):
        def broken(self, user_id, now=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(UsageGate, "consume_one", broken)

        response = client.post("/api/v1/usage/consume")

        assert response.status_code == 500
        assert response.json()["consumed"] is False
        assert response.json()["limit"] == 0

    def test_consume(self, client, make_entitlement, user_id):
        make_entitlement(user_id=user_id, plan="pro", used=499, period_end=_next_week())

        first = client.post("/api/v1/usage/consume").json()
        second = client.post("/api/v1/usage/consume").json()

        assert first["consumed"] is True
        assert first["remaining"] == 0
        assert second["consumed"] is False

    def test_reset_requires_active_subscription(self, client):
        response = client.post("/api/v1/usage/reset")

        assert response.status_code == 400

    def test_reset(self, client, make_entitlement, user_id):
        make_entitlement(user_id=user_id, plan="ultra_pro", used=1500, period_end=_next_week())

        response = client.post("/api/v1/usage/reset")

        assert response.status_code == 200
        assert response.json()["used"] == 0
        assert response.json()["limit"] == 2000


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscriptionRoutes:
    def test_current_without_subscription_is_virtual_free(self, client, user_id):
        body = client.get("/api/v1/subscriptions/current").json()

        assert body["user_id"] == str(user_id)
        assert body["plan"] == "free"
        assert body["status"] == "none"

    def test_current_with_subscription(self, client, make_entitlement, user_id):
        make_entitlement(user_id=user_id, plan="pro")

        body = client.get("/api/v1/subscriptions/current").json()

        assert body["plan"] == "pro"
        assert body["status"] == "active"

    def test_cancel_without_subscription(self, client):
        assert client.post("/api/v1/subscriptions/cancel").status_code == 400

    def test_checkout_rejects_unknown_plan(self, client):
        response = client.post(
            "/api/v1/subscriptions/checkout",
            json={"plan": "enterprise", "success_url": "https://x/ok", "cancel_url": "https://x/no"},
        )

        assert response.status_code == 422


# =============================================================================
# Webhooks
# =============================================================================


class TestStripeWebhook:
    def test_missing_signature(self, client):
        assert client.post("/api/v1/webhooks/stripe", content=b"{}").status_code == 400

    def test_bad_signature(self, client):
        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400

    def test_signed_payment_failed_event(self, client, make_entitlement, store, user_id):
        make_entitlement(user_id=user_id, stripe_subscription_id="sub_123")
        payload = json.dumps({
            "id": "evt_1",
            "object": "event",
            "type": "invoice.payment_failed",
            "data": {"object": {"id": "in_1", "subscription": "sub_123"}},
        })

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={"Stripe-Signature": _signed(payload), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        assert store.get_subscription(user_id).status == "past_due"

    def test_health_lists_handled_events(self, client):
        body = client.get("/api/v1/webhooks/health").json()

        assert body["status"] == "healthy"
        assert body["signing_secret_configured"] is True
        assert "charge.refunded" in body["handled_events"]
        assert "invoice.payment_succeeded" in body["handled_events"]


# =============================================================================
# Maintenance
# =============================================================================


class TestMaintenanceRoutes:
    def test_sweep_requires_cron_secret(self, client):
        assert client.post("/api/v1/maintenance/sweep").status_code == 403
        assert client.post(
            "/api/v1/maintenance/sweep", headers={"X-Cron-Secret": "wrong"}
        ).status_code == 403

    def test_sweep(self, client):
        response = client.post("/api/v1/maintenance/sweep", headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "cleaned": 0,
            "terminal_removed": 0,
            "orphaned_usage_removed": 0,
        }
