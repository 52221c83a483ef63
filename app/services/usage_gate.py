"""
Usage Gate

Request-time answers to "may this user generate one more image", always
after a lazy reconciliation pass so an expired window is renewed before it
is judged.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.services.entitlement_store import EntitlementStore
from app.services.exceptions import NoActiveSubscriptionError
from app.services.quota_policy import quota_for
from app.services.reconciler import Reconciler, UsageLimits
from app.utils.dates import utcnow, add_months

logger = logging.getLogger(__name__)


class UsageGate:
    """Quota checks and consumption for one request."""

    def __init__(self, db: Session):
        self.store = EntitlementStore(db)
        self.reconciler = Reconciler(self.store)

    def check_limit(self, user_id: UUID, now: Optional[datetime] = None) -> UsageLimits:
        """Current window for the user. Never changes the used count."""
        return self.reconciler.reconcile(user_id, now=now)

    def consume_one(self, user_id: UUID, now: Optional[datetime] = None) -> bool:
        """
        Consume one unit of quota.

        Returns:
            True if the increment was applied, False if the user is out of
            quota or on the free plan
        """
        now = now or utcnow()
        limits = self.reconciler.reconcile(user_id, now=now)
        if not limits.can_consume:
            logger.info(f"User {user_id} cannot consume: {limits.used}/{limits.limit}")
            return False

        # The reconcile read is only a hint; the guarded UPDATE decides
        consumed = self.store.try_increment_usage(user_id, now)
        if not consumed:
            logger.info(f"User {user_id} reached limit between check and increment")
        return consumed

    def reset_manually(self, user_id: UUID, now: Optional[datetime] = None) -> UsageLimits:
        """
        Force the counter back to zero for the current plan.

        Skips the natural expiry check. The period end is left alone, so an
        already expired window still renews on the next check.

        Raises:
            NoActiveSubscriptionError: If the user has no active subscription
        """
        now = now or utcnow()
        subscription = self.store.get_subscription(user_id)
        if subscription is None or not subscription.is_active:
            raise NoActiveSubscriptionError(user_id)

        limit = quota_for(subscription.plan)
        usage = self.store.get_usage(user_id)

        fields = {
            "image_generations_used": 0,
            "image_generations_limit": limit,
            "period_start": now,
            "updated_at": now,
        }
        if usage is None:
            fields["period_end"] = subscription.current_period_end or add_months(now, 1)

        usage = self.store.upsert_usage(user_id, **fields)
        logger.info(f"Usage manually reset for user {user_id}: 0/{limit}")

        return UsageLimits.from_usage(usage, subscription.plan)
