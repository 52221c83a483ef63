"""
Date helpers for entitlement windows.

All timestamps in the entitlement tables are naive UTC.
"""

import calendar
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, matching the column convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int = 1) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month -> Feb 28 (or 29), never Mar 3.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def isoformat_or_none(value):
    if value is None:
        return None
    return value.isoformat()
