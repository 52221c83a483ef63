"""Tests for quota checks, consumption and manual reset."""

from datetime import timedelta
from uuid import uuid4

import pytest

from app.services.exceptions import NoActiveSubscriptionError
from app.services.reconciler import Reconciler, UsageLimits
from app.services.usage_gate import UsageGate
from app.utils.dates import add_months


class TestConsumeOne:
    def test_last_unit_then_refused(self, db, store, make_entitlement, now):
        user_id = make_entitlement(plan="ultra_pro", used=1999)
        gate = UsageGate(db)

        assert gate.consume_one(user_id, now=now) is True
        assert store.get_usage(user_id).image_generations_used == 2000

        assert gate.consume_one(user_id, now=now) is False
        assert store.get_usage(user_id).image_generations_used == 2000

    def test_free_user_cannot_consume(self, db, store, now):
        user_id = uuid4()

        assert UsageGate(db).consume_one(user_id, now=now) is False
        assert store.get_usage(user_id) is None

    def test_expired_window_renews_before_consuming(self, db, store, make_entitlement, now):
        user_id = make_entitlement(plan="pro", period_end=now - timedelta(days=2), used=500)

        assert UsageGate(db).consume_one(user_id, now=now) is True

        usage = store.get_usage(user_id)
        assert usage.image_generations_used == 1
        assert usage.period_end == add_months(now, 1)

    def test_stale_check_cannot_push_past_limit(self, db, store, make_entitlement, now, monkeypatch):
        user_id = make_entitlement(plan="pro", used=500)
        stale = UsageLimits(can_consume=True, used=499, limit=500, plan="pro")
        monkeypatch.setattr(Reconciler, "reconcile", lambda self, user_id, now=None: stale)

        assert UsageGate(db).consume_one(user_id, now=now) is False
        assert store.get_usage(user_id).image_generations_used == 500

    def test_closed_window_refuses_increment(self, db, store, make_entitlement, now, monkeypatch):
        user_id = make_entitlement(plan="pro", period_end=now, used=10)
        stale = UsageLimits(can_consume=True, used=10, limit=500, plan="pro")
        monkeypatch.setattr(Reconciler, "reconcile", lambda self, user_id, now=None: stale)

        assert UsageGate(db).consume_one(user_id, now=now) is False
        assert store.get_usage(user_id).image_generations_used == 10


class TestCheckLimit:
    def test_check_does_not_change_usage(self, db, store, make_entitlement, now):
        user_id = make_entitlement(plan="pro", used=25)
        gate = UsageGate(db)

        limits = gate.check_limit(user_id, now=now)
        gate.check_limit(user_id, now=now)

        assert limits.used == 25
        assert limits.remaining == 475
        assert store.get_usage(user_id).image_generations_used == 25


class TestResetManually:
    def test_reset_keeps_period_end(self, db, store, make_entitlement, now):
        end = now + timedelta(days=7)
        user_id = make_entitlement(plan="pro", period_end=end, used=321)

        limits = UsageGate(db).reset_manually(user_id, now=now)

        assert limits.used == 0
        assert limits.limit == 500
        usage = store.get_usage(user_id)
        assert usage.image_generations_used == 0
        assert usage.period_start == now
        assert usage.period_end == end

    def test_reset_creates_missing_usage_row(self, db, store, make_entitlement, now):
        end = now + timedelta(days=7)
        user_id = make_entitlement(plan="ultra_pro", period_end=end, with_usage=False)

        limits = UsageGate(db).reset_manually(user_id, now=now)

        assert limits.limit == 2000
        assert store.get_usage(user_id).period_end == end

    def test_reset_without_subscription_raises(self, db, now):
        with pytest.raises(NoActiveSubscriptionError):
            UsageGate(db).reset_manually(uuid4(), now=now)

    def test_reset_with_inactive_subscription_raises(self, db, store, make_entitlement, now):
        user_id = make_entitlement(status="past_due", used=40)

        with pytest.raises(NoActiveSubscriptionError):
            UsageGate(db).reset_manually(user_id, now=now)

        assert store.get_usage(user_id).image_generations_used == 40
