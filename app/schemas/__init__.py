"""Pydantic schemas for API request/response validation."""

from app.schemas.subscription import (
    SubscriptionResponse,
    SyncResponse,
    CancelResponse,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    SweepResponse,
)
from app.schemas.usage import (
    UsageLimitResponse,
    ConsumeResponse,
    ManualResetResponse,
)

__all__ = [
    # Subscription
    "SubscriptionResponse",
    "SyncResponse",
    "CancelResponse",
    "CheckoutSessionCreate",
    "CheckoutSessionResponse",
    "SweepResponse",
    # Usage
    "UsageLimitResponse",
    "ConsumeResponse",
    "ManualResetResponse",
]
