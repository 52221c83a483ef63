"""
Subscription and billing API endpoints.

Handles the stored subscription, Stripe sync, cancellation and checkout.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_user_id
from app.schemas.subscription import (
    SubscriptionResponse,
    SyncResponse,
    CancelResponse,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
)
from app.services.billing_sync import sync_with_provider
from app.services.entitlement_store import EntitlementStore
from app.services.exceptions import EntitlementError, InvalidPlanError
from app.services.reconciler import Reconciler
from app.services.stripe_service import StripeService

router = APIRouter()


@router.get("/current", response_model=SubscriptionResponse)
async def get_current_subscription(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Get current user's subscription details.
    """
    try:
        subscription = EntitlementStore(db).get_subscription(user_id)
    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to load subscription: {str(e)}",
        )

    if not subscription:
        # Return virtual free subscription
        return SubscriptionResponse(user_id=user_id, plan="free", status="none")

    return subscription


@router.post("/sync", response_model=SyncResponse)
async def sync_subscription(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Compare the stored subscription with Stripe and revert if Stripe says it ended.
    """
    try:
        outcome = sync_with_provider(db, user_id)
    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync subscription: {str(e)}",
        )

    return SyncResponse(status=outcome.value)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Cancel the current subscription immediately and revert to free.
    """
    store = EntitlementStore(db)
    try:
        subscription = store.get_subscription(user_id)
        if not subscription:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No subscription found",
            )

        stripe_status = None
        if subscription.stripe_subscription_id:
            result = StripeService.cancel_subscription(subscription.stripe_subscription_id)
            stripe_status = result["status"]

        Reconciler(store).revert_to_free(user_id)

    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to cancel subscription: {str(e)}",
        )

    return CancelResponse(message="Subscription canceled", stripe_status=stripe_status)


@router.post("/checkout", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    data: CheckoutSessionCreate,
    user_id: UUID = Depends(get_current_user_id),
):
    """
    Create a Stripe checkout session for upgrading.
    """
    try:
        result = StripeService.create_checkout_session(
            user_id=user_id,
            plan=data.plan,
            success_url=data.success_url,
            cancel_url=data.cancel_url,
        )
    except InvalidPlanError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except EntitlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create checkout session: {str(e)}",
        )

    return CheckoutSessionResponse(**result)
