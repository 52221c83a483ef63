"""Service layer for the entitlements service."""

from app.services.entitlement_store import EntitlementStore
from app.services.quota_policy import quota_for, plan_for_product
from app.services.reconciler import Reconciler, UsageLimits, decide_window_action
from app.services.usage_gate import UsageGate
from app.services.stripe_service import StripeService
from app.services.billing_sync import SyncOutcome, sync_with_provider, sync_active_subscriptions
from app.services.subscription_sweep import SweepResult, sweep

__all__ = [
    "EntitlementStore",
    "quota_for",
    "plan_for_product",
    "Reconciler",
    "UsageLimits",
    "decide_window_action",
    "UsageGate",
    "StripeService",
    "SyncOutcome",
    "sync_with_provider",
    "sync_active_subscriptions",
    "SweepResult",
    "sweep",
]
