"""Usage limit Pydantic schemas.

Field names follow what the chat front end already reads.
"""

from typing import Optional

from pydantic import BaseModel

from app.services.reconciler import UsageLimits
from app.utils.dates import isoformat_or_none


class UsageLimitResponse(BaseModel):
    """Answer to "can this user generate another image"."""

    can_generate: bool
    remaining: int
    limit: int
    reset_date: Optional[str] = None

    @classmethod
    def from_limits(cls, limits: UsageLimits) -> "UsageLimitResponse":
        return cls(
            can_generate=limits.can_consume,
            remaining=limits.remaining,
            limit=limits.limit,
            reset_date=isoformat_or_none(limits.period_end),
        )

    @classmethod
    def unavailable(cls) -> "UsageLimitResponse":
        return cls(can_generate=False, remaining=0, limit=0, reset_date=None)


class ConsumeResponse(BaseModel):
    consumed: bool
    remaining: int
    limit: int
    reset_date: Optional[str] = None


class ManualResetResponse(BaseModel):
    used: int
    limit: int
    message: str
