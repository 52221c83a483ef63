"""
Celery application configuration.

Defines the Celery app instance and beat schedule for periodic tasks.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "entitlements",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "worker.tasks.cleanup",
        "worker.tasks.billing_sync",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Reject task if worker dies
    worker_prefetch_multiplier=1,  # One task at a time per worker

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    task_routes={
        "worker.tasks.cleanup.*": {"queue": "maintenance"},
        "worker.tasks.billing_sync.*": {"queue": "maintenance"},
    },
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Revert expired windows - every hour
    "sweep-expired-subscriptions": {
        "task": "worker.tasks.cleanup.sweep_expired_subscriptions",
        "schedule": crontab(minute=0),
        "options": {"queue": "maintenance"},
    },

    # Corrective Stripe sync - daily at 3 AM UTC
    "sync-active-subscriptions": {
        "task": "worker.tasks.billing_sync.sync_active_subscriptions_task",
        "schedule": crontab(minute=0, hour=3),
        "options": {"queue": "maintenance"},
    },
}
