"""
Billing Mirror Sync

Corrective check of local entitlement rows against Stripe. Used on demand
and by a low-frequency batch job, never on the per-request quota path.
Only an explicit answer from Stripe (subscription missing or in a terminal
status) reverts a user; a failed call leaves local state alone.
"""

import enum
import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import TERMINAL_STATUSES
from app.services.entitlement_store import EntitlementStore
from app.services.exceptions import EntitlementError
from app.services.reconciler import Reconciler
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


class SyncOutcome(str, enum.Enum):
    NO_SUBSCRIPTION = "no_subscription"
    SYNCED = "synced"
    REVERTED_TO_FREE = "reverted_to_free"


@dataclass
class BulkSyncResult:
    checked: int = 0
    synced: int = 0
    reverted: int = 0
    failed: int = 0
    failed_user_ids: list = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "synced": self.synced,
            "reverted": self.reverted,
            "failed": self.failed,
        }


def sync_with_provider(db: Session, user_id: UUID) -> SyncOutcome:
    """
    Compare the user's stored subscription with Stripe.

    Raises:
        ProviderUnavailableError: Stripe could not answer; nothing changed
        StoreUnavailableError: The local rows could not be read or deleted
    """
    store = EntitlementStore(db)
    subscription = store.get_subscription(user_id)

    if subscription is None:
        logger.info(f"No subscription in database for user {user_id}")
        return SyncOutcome.NO_SUBSCRIPTION

    billing_ref = subscription.stripe_subscription_id
    if not billing_ref:
        # Nothing to ask Stripe about, so no signal to act on
        logger.warning(f"Subscription for user {user_id} has no Stripe id, leaving as is")
        return SyncOutcome.SYNCED

    remote = StripeService.get_subscription_status(billing_ref)

    if remote is None:
        logger.info(f"Subscription {billing_ref} missing in Stripe, reverting user {user_id}")
        Reconciler(store).revert_to_free(user_id)
        return SyncOutcome.REVERTED_TO_FREE

    if remote["status"] in TERMINAL_STATUSES:
        logger.info(
            f"Subscription {billing_ref} is {remote['status']} in Stripe, reverting user {user_id}"
        )
        Reconciler(store).revert_to_free(user_id)
        return SyncOutcome.REVERTED_TO_FREE

    logger.info(
        f"Subscription {billing_ref} is {remote['status']} in Stripe, local status {subscription.status}"
    )
    return SyncOutcome.SYNCED


def sync_active_subscriptions(db: Session) -> BulkSyncResult:
    """
    Run sync_with_provider for every user holding an active row.

    One user's failure is logged and counted, the pass continues.
    """
    result = BulkSyncResult()

    for user_id in EntitlementStore(db).active_user_ids():
        result.checked += 1
        try:
            outcome = sync_with_provider(db, user_id)
        except EntitlementError as e:
            logger.error(f"Sync failed for user {user_id}: {e}")
            result.failed += 1
            result.failed_user_ids.append(user_id)
            continue

        if outcome == SyncOutcome.REVERTED_TO_FREE:
            result.reverted += 1
        else:
            result.synced += 1

    logger.info(f"Bulk Stripe sync finished: {result.as_dict()}")
    return result
