"""
Subscription Models

The two persisted halves of a user's entitlement window: the subscription
record mirrored from Stripe and the usage counter for the current window.
A user with neither row is on the free plan.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Integer, Index

from app.database import Base
from app.utils.dates import utcnow
from app.utils.uuid_type import GUID

ACTIVE = "active"

# Statuses that mean Stripe has stopped collecting for the subscription
TERMINAL_STATUSES = ("canceled", "incomplete_expired", "unpaid", "past_due")


class Subscription(Base):
    """Stripe subscription mirrored per user."""

    __tablename__ = "user_subscriptions"

    # Primary key
    id = Column(GUID(), primary_key=True, default=uuid.uuid4)

    # Owning identity (Supabase user id)
    user_id = Column(GUID(), nullable=False, unique=True, index=True)

    # Stripe IDs
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)

    # Plan details
    plan = Column(String(50), nullable=False, default="free")
    status = Column(String(50), nullable=False, default=ACTIVE)
    # Status: active, canceled, unpaid, past_due, incomplete_expired, pending_payment

    # Entitlement window
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_user_subscriptions_status_period_end", "status", "current_period_end"),
    )

    def __repr__(self):
        return f"<Subscription {self.user_id} {self.plan} - {self.status}>"

    @property
    def is_active(self) -> bool:
        """Check if subscription currently entitles the user."""
        return self.status == ACTIVE


class UsageLimit(Base):
    """Quota counter for the current entitlement window."""

    __tablename__ = "usage_limits"

    # Primary key
    id = Column(GUID(), primary_key=True, default=uuid.uuid4)

    user_id = Column(GUID(), nullable=False, unique=True, index=True)

    # Usage counters
    image_generations_used = Column(Integer, nullable=False, default=0)
    image_generations_limit = Column(Integer, nullable=False, default=0)

    # Window, kept in lock-step with the subscription
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return (
            f"<UsageLimit {self.user_id} "
            f"{self.image_generations_used}/{self.image_generations_limit}>"
        )

    @property
    def remaining(self) -> int:
        return max(self.image_generations_limit - self.image_generations_used, 0)
