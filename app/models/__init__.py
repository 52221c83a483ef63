"""
Entitlements Database Models

All SQLAlchemy models are imported here for easy access.
"""

from app.models.subscription import Subscription, UsageLimit, ACTIVE, TERMINAL_STATUSES

__all__ = [
    "Subscription",
    "UsageLimit",
    "ACTIVE",
    "TERMINAL_STATUSES",
]
