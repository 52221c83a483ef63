"""
Maintenance API endpoints.

Scheduler-triggered passes over all users, guarded by the cron secret.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_cron_secret
from app.schemas.subscription import SweepResponse
from app.services.billing_sync import sync_active_subscriptions
from app.services.exceptions import EntitlementError
from app.services.subscription_sweep import sweep

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(db: Session = Depends(get_db)):
    """
    Revert users whose window ended more than the grace period ago.
    """
    try:
        result = sweep(db)
    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sweep failed: {str(e)}",
        )

    return SweepResponse(**result.as_dict())


@router.post("/sync-subscriptions")
async def run_bulk_sync(db: Session = Depends(get_db)):
    """
    Check every active subscription against Stripe.
    """
    return sync_active_subscriptions(db).as_dict()
