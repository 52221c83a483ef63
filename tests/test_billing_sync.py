"""Tests for the Stripe mirror sync."""

from uuid import uuid4

import pytest

from app.services.billing_sync import SyncOutcome, sync_with_provider, sync_active_subscriptions
from app.services.exceptions import ProviderUnavailableError
from app.services.stripe_service import StripeService


def _stripe_answers(monkeypatch, answers):
    """Make get_subscription_status answer per billing ref."""

    def fake_status(subscription_id):
        answer = answers[subscription_id]
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(StripeService, "get_subscription_status", staticmethod(fake_status))


class TestSyncWithProvider:
    def test_no_local_subscription(self, db, monkeypatch):
        _stripe_answers(monkeypatch, {})

        assert sync_with_provider(db, uuid4()) == SyncOutcome.NO_SUBSCRIPTION

    def test_missing_in_stripe_reverts(self, db, store, make_entitlement, monkeypatch):
        user_id = make_entitlement(stripe_subscription_id="sub_gone", used=50)
        _stripe_answers(monkeypatch, {"sub_gone": None})

        assert sync_with_provider(db, user_id) == SyncOutcome.REVERTED_TO_FREE
        assert store.get_subscription(user_id) is None
        assert store.get_usage(user_id) is None

    @pytest.mark.parametrize("status", ["canceled", "unpaid", "incomplete_expired", "past_due"])
    def test_terminal_status_reverts(self, db, store, make_entitlement, monkeypatch, status):
        user_id = make_entitlement(stripe_subscription_id="sub_1")
        _stripe_answers(monkeypatch, {"sub_1": {"id": "sub_1", "status": status, "current_period_end": None}})

        assert sync_with_provider(db, user_id) == SyncOutcome.REVERTED_TO_FREE
        assert store.get_subscription(user_id) is None

    def test_active_in_stripe_is_synced(self, db, store, make_entitlement, monkeypatch):
        user_id = make_entitlement(stripe_subscription_id="sub_1", used=7)
        _stripe_answers(monkeypatch, {"sub_1": {"id": "sub_1", "status": "active", "current_period_end": None}})

        assert sync_with_provider(db, user_id) == SyncOutcome.SYNCED
        assert store.get_usage(user_id).image_generations_used == 7

    def test_without_billing_ref_leaves_rows(self, db, store, make_entitlement, monkeypatch):
        user_id = make_entitlement(stripe_subscription_id=None)
        _stripe_answers(monkeypatch, {})

        assert sync_with_provider(db, user_id) == SyncOutcome.SYNCED
        assert store.get_subscription(user_id) is not None

    def test_provider_failure_changes_nothing(self, db, store, make_entitlement, monkeypatch):
        user_id = make_entitlement(stripe_subscription_id="sub_1")
        _stripe_answers(monkeypatch, {"sub_1": ProviderUnavailableError("timeout")})

        with pytest.raises(ProviderUnavailableError):
            sync_with_provider(db, user_id)

        assert store.get_subscription(user_id) is not None
        assert store.get_usage(user_id) is not None


def test_bulk_sync_counts_each_outcome(db, store, make_entitlement, monkeypatch):
    kept = make_entitlement(stripe_subscription_id="sub_ok")
    gone = make_entitlement(stripe_subscription_id="sub_gone")
    broken = make_entitlement(stripe_subscription_id="sub_err")
    make_entitlement(status="canceled", stripe_subscription_id="sub_old")
    _stripe_answers(monkeypatch, {
        "sub_ok": {"id": "sub_ok", "status": "active", "current_period_end": None},
        "sub_gone": None,
        "sub_err": ProviderUnavailableError("rate limited"),
    })

    result = sync_active_subscriptions(db)

    assert result.as_dict() == {"checked": 3, "synced": 1, "reverted": 1, "failed": 1}
    assert result.failed_user_ids == [broken]
    assert store.get_subscription(kept) is not None
    assert store.get_subscription(gone) is None
    assert store.get_subscription(broken) is not None
