"""
Stripe reconciliation tasks.

Low-frequency corrective pass for missed webhooks.
"""

import logging

from celery import shared_task

from app.database import session_scope
from app.services.billing_sync import sync_active_subscriptions

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def sync_active_subscriptions_task(self):
    """
    Check every active subscription against Stripe.

    Users Stripe reports as canceled or missing are reverted to free.
    """
    logger.info("Starting bulk Stripe subscription sync")

    with session_scope() as db:
        result = sync_active_subscriptions(db)

    return result.as_dict()
