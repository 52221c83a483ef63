"""Subscription and billing Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubscriptionResponse(BaseModel):
    """Schema for the stored subscription of the current user."""

    user_id: UUID
    plan: str
    status: str
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SyncResponse(BaseModel):
    """Result of comparing the stored subscription with Stripe."""

    status: str  # no_subscription, synced, reverted_to_free


class CancelResponse(BaseModel):
    message: str
    stripe_status: Optional[str] = None


class CheckoutSessionCreate(BaseModel):
    """Schema for creating Stripe checkout session."""

    plan: str = Field(..., pattern="^(pro|ultra_pro)$")
    success_url: str
    cancel_url: str


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session response."""

    checkout_url: str
    session_id: str


class SweepResponse(BaseModel):
    """Counts from one cleanup sweep."""

    cleaned: int
    terminal_removed: int = 0
    orphaned_usage_removed: int = 0
