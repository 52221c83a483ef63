"""
Cleanup and maintenance tasks.

Scheduled sweep of entitlement rows whose window has ended.
"""

import logging

from celery import shared_task

from app.database import session_scope
from app.services.exceptions import StoreUnavailableError
from app.services.subscription_sweep import sweep

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sweep_expired_subscriptions(self):
    """
    Revert users whose active window ended more than the grace period ago.

    Safe to retry: each user's deletion is independent and re-checked.
    """
    logger.info("Sweeping expired subscriptions")

    try:
        with session_scope() as db:
            result = sweep(db)
    except StoreUnavailableError as e:
        logger.warning(f"Sweep interrupted by store failure, retrying: {e}")
        raise self.retry(exc=e)

    return result.as_dict()
