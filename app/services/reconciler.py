"""
Entitlement Reconciler

Keeps the subscription row and the usage row for a user on the same
entitlement window. Every path that needs to know whether a window is still
current (the usage gate, manual reset, webhooks) goes through
decide_window_action, which is the single definition of "expired".

Transitions:

    no subscription row            -> FREE     (nothing to do)
    status != active               -> REVERT   (delete both rows)
    now >= period_end              -> RENEW    (new window from now, used = 0)
    usage row missing / stale      -> REALIGN  (copy window, used = 0)
    usage limit != plan quota      -> REALIGN  (fix limit, keep used)
    otherwise                      -> KEEP
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.models import Subscription, UsageLimit, ACTIVE
from app.services.entitlement_store import EntitlementStore
from app.services.quota_policy import quota_for
from app.utils.dates import utcnow, add_months

logger = logging.getLogger(__name__)

# Renewal races are resolved by re-reading; a handful of rounds is plenty
MAX_RENEW_ATTEMPTS = 3


class WindowAction(str, enum.Enum):
    FREE = "free"
    REVERT = "revert_to_free"
    RENEW = "renew"
    REALIGN = "realign"
    KEEP = "keep"


@dataclass(frozen=True)
class UsageLimits:
    """Snapshot of a user's entitlement window."""

    can_consume: bool
    used: int
    limit: int
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    plan: str = "free"

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @classmethod
    def free(cls) -> "UsageLimits":
        return cls(can_consume=False, used=0, limit=0)

    @classmethod
    def from_usage(cls, usage: UsageLimit, plan: str) -> "UsageLimits":
        used = usage.image_generations_used or 0
        limit = usage.image_generations_limit or 0
        return cls(
            can_consume=used < limit,
            used=used,
            limit=limit,
            period_start=usage.period_start,
            period_end=usage.period_end,
            plan=plan,
        )


def is_window_expired(period_end: Optional[datetime], now: datetime) -> bool:
    """A window is expired at its end instant, not one tick after."""
    return period_end is None or now >= period_end


def next_window(now: datetime) -> tuple[datetime, datetime]:
    """Renewal is anchored at the moment of expiry handling, not at signup."""
    return now, add_months(now, 1)


def decide_window_action(
    subscription: Optional[Subscription],
    usage: Optional[UsageLimit],
    now: datetime,
) -> WindowAction:
    """Pure transition function for one user's entitlement window."""
    if subscription is None:
        return WindowAction.FREE

    if subscription.status != ACTIVE:
        return WindowAction.REVERT

    if is_window_expired(subscription.current_period_end, now):
        return WindowAction.RENEW

    if usage is None:
        return WindowAction.REALIGN

    if usage.period_end != subscription.current_period_end:
        return WindowAction.REALIGN

    if usage.image_generations_limit != quota_for(subscription.plan):
        return WindowAction.REALIGN

    return WindowAction.KEEP


class Reconciler:
    """Applies decide_window_action against the entitlement store."""

    def __init__(self, store: EntitlementStore):
        self.store = store

    def reconcile(self, user_id: UUID, now: Optional[datetime] = None) -> UsageLimits:
        """
        Bring the user's rows onto the current window and report it.

        Idempotent: two calls with no consumption in between return the same
        used / limit / period_end.
        """
        now = now or utcnow()

        for attempt in range(1, MAX_RENEW_ATTEMPTS + 1):
            subscription = self.store.get_subscription(user_id)
            usage = self.store.get_usage(user_id)
            action = decide_window_action(subscription, usage, now)

            if action == WindowAction.FREE:
                return UsageLimits.free()

            if action == WindowAction.REVERT:
                logger.info(
                    f"Subscription for user {user_id} is {subscription.status}, reverting to free"
                )
                self.revert_to_free(user_id)
                return UsageLimits.free()

            if action == WindowAction.RENEW:
                limits = self._renew(subscription, now)
                if limits is not None:
                    return limits
                logger.info(
                    f"Renewal for user {user_id} lost a race (attempt {attempt}), re-reading"
                )
                continue

            if action == WindowAction.REALIGN:
                usage = self._realign(subscription, usage, now)

            return UsageLimits.from_usage(usage, subscription.plan)

        # Another writer keeps moving the row; report what is stored now
        usage = self.store.get_usage(user_id)
        subscription = self.store.get_subscription(user_id)
        if usage is None or subscription is None or subscription.status != ACTIVE:
            return UsageLimits.free()
        return UsageLimits.from_usage(usage, subscription.plan)

    def _renew(self, subscription: Subscription, now: datetime) -> Optional[UsageLimits]:
        limit = quota_for(subscription.plan)
        period_start, period_end = next_window(now)

        renewed = self.store.renew_window(
            subscription.user_id,
            expected_updated_at=subscription.updated_at,
            limit=limit,
            period_start=period_start,
            period_end=period_end,
            now=now,
        )
        if not renewed:
            return None

        logger.info(
            f"Renewed window for user {subscription.user_id}: plan={subscription.plan} "
            f"limit={limit} period_end={period_end.isoformat()}"
        )
        return UsageLimits(
            can_consume=limit > 0,
            used=0,
            limit=limit,
            period_start=period_start,
            period_end=period_end,
            plan=subscription.plan,
        )

    def _realign(
        self,
        subscription: Subscription,
        usage: Optional[UsageLimit],
        now: datetime,
    ) -> UsageLimit:
        limit = quota_for(subscription.plan)
        fields = {
            "image_generations_limit": limit,
            "period_start": subscription.current_period_start or now,
            "period_end": subscription.current_period_end,
            "updated_at": now,
        }

        # A counter from an earlier window is a window transition: reset it
        if usage is None or usage.period_end is None or usage.period_end < subscription.current_period_end:
            fields["image_generations_used"] = 0
            logger.info(f"Starting usage counter for user {subscription.user_id} on current window")
        else:
            logger.info(
                f"Correcting usage limit for user {subscription.user_id}: "
                f"{usage.image_generations_limit} -> {limit}"
            )

        return self.store.upsert_usage(subscription.user_id, **fields)

    # ==========================================================================
    # Lifecycle transitions
    # ==========================================================================

    def activate_subscription(
        self,
        user_id: UUID,
        plan: str,
        stripe_subscription_id: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UsageLimits:
        """
        Payment confirmed: open a fresh window for the plan.

        Both rows are written in one transaction.
        """
        now = now or utcnow()
        limit = quota_for(plan)
        period_start, period_end = next_window(now)

        self.store.upsert_subscription(
            user_id,
            commit=False,
            plan=plan,
            status=ACTIVE,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
            current_period_start=period_start,
            current_period_end=period_end,
            updated_at=now,
        )
        self.store.upsert_usage(
            user_id,
            image_generations_used=0,
            image_generations_limit=limit,
            period_start=period_start,
            period_end=period_end,
            updated_at=now,
        )

        logger.info(f"Activated {plan} for user {user_id} until {period_end.isoformat()}")
        return UsageLimits(
            can_consume=limit > 0,
            used=0,
            limit=limit,
            period_start=period_start,
            period_end=period_end,
            plan=plan,
        )

    def revert_to_free(self, user_id: UUID) -> bool:
        """Delete both entitlement rows. Returns True if anything was removed."""
        removed = self.store.delete_entitlements(user_id)
        if removed:
            logger.info(f"User {user_id} reverted to free plan")
        return removed
