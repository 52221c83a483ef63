"""Celery tasks package."""

from worker.tasks.cleanup import sweep_expired_subscriptions
from worker.tasks.billing_sync import sync_active_subscriptions_task

__all__ = [
    "sweep_expired_subscriptions",
    "sync_active_subscriptions_task",
]
