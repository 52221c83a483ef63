"""
Pytest configuration for the entitlements tests.

Points the app at SQLite and fills in the secrets the settings need.
Environment variables must be set before any app imports.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "false"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_PRODUCTS_PRO"] = "prod_pro"
os.environ["STRIPE_PRODUCTS_ULTRA_PRO"] = "prod_ultra, prod_ultra_annual"
os.environ["STRIPE_PRICE_PRO_MONTHLY"] = "price_pro"
os.environ["STRIPE_PRICE_ULTRA_PRO_MONTHLY"] = "price_ultra"

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Subscription, UsageLimit, ACTIVE
from app.services.entitlement_store import EntitlementStore
from app.services.quota_policy import quota_for


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def store(db):
    return EntitlementStore(db)


@pytest.fixture
def now():
    return datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def make_entitlement(db, now):
    """
    Insert a subscription row and, unless with_usage=False, its usage row.

    The usage row shares the subscription's window by default.
    """

    def _make(
        user_id=None,
        plan="pro",
        status=ACTIVE,
        period_end=None,
        used=0,
        limit=None,
        updated_at=None,
        with_usage=True,
        usage_period_end=None,
        stripe_subscription_id="sub_123",
    ):
        user_id = user_id or uuid4()
        period_end = period_end or now + timedelta(days=10)
        period_start = period_end - timedelta(days=30)
        updated_at = updated_at or now - timedelta(days=1)

        db.add(Subscription(
            user_id=user_id,
            plan=plan,
            status=status,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id="cus_123",
            current_period_start=period_start,
            current_period_end=period_end,
            created_at=period_start,
            updated_at=updated_at,
        ))
        if with_usage:
            db.add(UsageLimit(
                user_id=user_id,
                image_generations_used=used,
                image_generations_limit=quota_for(plan) if limit is None else limit,
                period_start=period_start,
                period_end=usage_period_end or period_end,
                created_at=period_start,
                updated_at=updated_at,
            ))
        db.commit()
        return user_id

    return _make
