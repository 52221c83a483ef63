"""
Quota policy.

Maps plans to their per-window quota and Stripe products to plans.
"""

import logging
from typing import Optional

from app.config import settings, PLAN_QUOTAS, PLAN_PRIORITY, PLAN_PRODUCT_SETTINGS, FREE_PLAN
from app.services.exceptions import InvalidPlanError

logger = logging.getLogger(__name__)


def quota_for(plan: Optional[str]) -> int:
    """
    Quota for a plan.

    Unknown plans are logged and get zero quota, never unlimited.
    """
    if plan in PLAN_QUOTAS:
        return PLAN_QUOTAS[plan]

    logger.error(f"{InvalidPlanError(plan)} - treating as {FREE_PLAN} with zero quota")
    return 0


def is_paid_plan(plan: Optional[str]) -> bool:
    return quota_for(plan) > 0


def plan_priority(plan: Optional[str]) -> int:
    """Rank used to pick the winner when a customer holds two subscriptions."""
    return PLAN_PRIORITY.get(plan, 0)


def _product_ids(setting_name: str) -> set[str]:
    raw = getattr(settings, setting_name, "") or ""
    return {p.strip() for p in raw.split(",") if p.strip()}


def plan_for_product(product_id: Optional[str]) -> str:
    """
    Resolve the plan sold by a Stripe product.

    Raises:
        InvalidPlanError: If the product is not configured for any plan
    """
    for plan, setting_name in PLAN_PRODUCT_SETTINGS.items():
        if product_id and product_id in _product_ids(setting_name):
            return plan
    raise InvalidPlanError(product_id)
