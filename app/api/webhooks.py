"""
Stripe webhook endpoint.

Billing events are the only path that grants a plan. Every event is
verified against the signing secret before it reaches the entitlement
tables, and failures map onto the status codes Stripe retries on.
"""

import logging

from fastapi import APIRouter, Depends, Request, HTTPException, status, Header
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.config import settings
from app.services.exceptions import EntitlementError, InvalidPlanError
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """
    Apply a signed Stripe event to the entitlement tables.

    - 400: bad signature, bad payload or a product outside the plan map.
      Stripe does not retry these.
    - 500: store or Stripe unavailable. Stripe redelivers, and every
      handler is safe to run twice.
    """
    if not stripe_signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature",
        )

    payload = await request.body()

    try:
        return StripeService.handle_webhook_event(payload, stripe_signature, db)
    except (ValueError, InvalidPlanError) as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except EntitlementError as e:
        logger.error(f"Webhook processing failed, Stripe will retry: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Webhook processing failed: {str(e)}",
        )


@router.get("/health")
async def health_check():
    """Webhook readiness: signing secret present and the events handled."""
    return {
        "status": "healthy" if settings.stripe_webhook_secret else "degraded",
        "service": "entitlements-api",
        "signing_secret_configured": bool(settings.stripe_webhook_secret),
        "handled_events": StripeService.handled_events(),
    }
