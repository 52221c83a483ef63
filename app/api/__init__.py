"""API routes package."""

from fastapi import APIRouter

from app.api import usage, subscriptions, webhooks, maintenance

api_router = APIRouter()

api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
