"""
Subscription cleanup sweep.

Scheduled, stateless pass that reverts users whose active window ended more
than the grace period ago and that nobody has touched since. The grace
period keeps the sweep from deleting a row a webhook or a lazy renewal is
about to write. The sweep never renews; renewal only happens through
reconciliation or payment confirmation.

Each user is deleted in its own transaction with the predicate re-checked,
so an interrupted run leaves nothing half-done and a rerun is harmless.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.services.entitlement_store import EntitlementStore
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    cleaned: int = 0
    terminal_removed: int = 0
    orphaned_usage_removed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def sweep(
    db: Session,
    now: Optional[datetime] = None,
    grace: Optional[timedelta] = None,
) -> SweepResult:
    """
    Delete stale entitlement rows.

    Args:
        db: Database session
        now: Reference time, defaults to the current UTC time
        grace: Grace period, defaults to settings.usage_sweep_grace_minutes

    Returns:
        Counts per pass; `cleaned` is the number of expired active
        subscriptions reverted to free
    """
    now = now or utcnow()
    if grace is None:
        grace = timedelta(minutes=settings.usage_sweep_grace_minutes)
    cutoff = now - grace

    store = EntitlementStore(db)
    result = SweepResult()

    logger.info(f"Sweeping entitlements with cutoff {cutoff.isoformat()}")

    for user_id in store.expired_active_user_ids(cutoff):
        if store.delete_expired_active(user_id, cutoff):
            result.cleaned += 1
            logger.info(f"Reverted user {user_id} to free: window ended before {cutoff.isoformat()}")

    # Missed cancellation webhooks leave non-active rows behind
    for user_id in store.stale_inactive_user_ids(cutoff):
        if store.delete_stale_inactive(user_id, cutoff):
            result.terminal_removed += 1

    result.orphaned_usage_removed = store.delete_orphaned_usage(cutoff)

    logger.info(f"Sweep finished: {result.as_dict()}")
    return result
