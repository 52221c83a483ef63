"""Utility modules for the entitlements service."""

from app.utils.dates import utcnow, add_months, isoformat_or_none
from app.utils.uuid_type import GUID

__all__ = [
    "utcnow",
    "add_months",
    "isoformat_or_none",
    "GUID",
]
