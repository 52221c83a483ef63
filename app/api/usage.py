"""
Usage limit API endpoints.

Image generation quota checks, consumption and manual reset. The gate
fails closed: any internal error answers "cannot generate".
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_user_id
from app.schemas.usage import UsageLimitResponse, ConsumeResponse, ManualResetResponse
from app.services.exceptions import EntitlementError, NoActiveSubscriptionError
from app.services.usage_gate import UsageGate
from app.utils.dates import isoformat_or_none

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/check-limit", response_model=UsageLimitResponse)
async def check_limit(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Check whether the current user can generate another image.

    Renews an expired window before answering.
    """
    try:
        limits = UsageGate(db).check_limit(user_id)
    except EntitlementError as e:
        logger.error(f"Error checking limits for user {user_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=UsageLimitResponse.unavailable().model_dump(),
        )
    except Exception as e:
        logger.exception(f"Unexpected error checking limits for user {user_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=UsageLimitResponse.unavailable().model_dump(),
        )

    return UsageLimitResponse.from_limits(limits)


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Record one image generation against the current window.

    Returns consumed=false when the user is out of quota.
    """
    gate = UsageGate(db)
    try:
        consumed = gate.consume_one(user_id)
        limits = gate.check_limit(user_id)
    except EntitlementError as e:
        logger.error(f"Error consuming quota for user {user_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ConsumeResponse(consumed=False, remaining=0, limit=0).model_dump(),
        )
    except Exception as e:
        logger.exception(f"Unexpected error consuming quota for user {user_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ConsumeResponse(consumed=False, remaining=0, limit=0).model_dump(),
        )

    return ConsumeResponse(
        consumed=consumed,
        remaining=limits.remaining,
        limit=limits.limit,
        reset_date=isoformat_or_none(limits.period_end),
    )


@router.post("/reset", response_model=ManualResetResponse)
async def reset_usage(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Manually reset the current user's usage to zero.

    Requires an active subscription.
    """
    try:
        limits = UsageGate(db).reset_manually(user_id)
    except NoActiveSubscriptionError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active subscription found",
        )
    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to reset usage: {str(e)}",
        )

    return ManualResetResponse(
        used=limits.used,
        limit=limits.limit,
        message=f"Usage reset to {limits.used}/{limits.limit}",
    )
