"""
Stripe Integration Service

Billing mirror for entitlement reconciliation: subscription status lookups,
cancellation, checkout, and webhook processing.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import stripe
from sqlalchemy.orm import Session

from app.config import settings, PLAN_PRICE_SETTINGS
from app.models import TERMINAL_STATUSES
from app.services.entitlement_store import EntitlementStore
from app.services.exceptions import InvalidPlanError, ProviderUnavailableError
from app.services.quota_policy import plan_for_product, plan_priority
from app.services.reconciler import Reconciler

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key


def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _first_item(subscription) -> Optional[dict]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else None


def _product_id(subscription) -> Optional[str]:
    item = _first_item(subscription)
    if not item:
        return None
    product = (item.get("price") or {}).get("product")
    if isinstance(product, dict):
        return product.get("id")
    return product


def _period_end(subscription) -> Optional[datetime]:
    # Newer API versions moved the billing period onto subscription items
    period_end = subscription.get("current_period_end")
    if not period_end:
        item = _first_item(subscription)
        period_end = item.get("current_period_end") if item else None
    return _timestamp(period_end)


class StripeService:
    """Service for Stripe operations."""

    # ==========================================================================
    # Billing mirror
    # ==========================================================================

    @staticmethod
    def get_subscription_status(subscription_id: str) -> Optional[dict]:
        """
        Get a subscription's authoritative status from Stripe.

        Args:
            subscription_id: Stripe subscription ID

        Returns:
            {"status", "current_period_end"} or None if Stripe has no such
            subscription

        Raises:
            ProviderUnavailableError: On any other Stripe failure
        """
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.info(f"Subscription {subscription_id} not found in Stripe")
                return None
            logger.error(f"Error getting subscription {subscription_id}: {e}")
            raise ProviderUnavailableError(str(e)) from e
        except stripe.StripeError as e:
            logger.error(f"Error getting subscription {subscription_id}: {e}")
            raise ProviderUnavailableError(str(e)) from e

        return {
            "id": subscription.get("id"),
            "status": subscription.get("status"),
            "current_period_end": _period_end(subscription),
        }

    @staticmethod
    def cancel_subscription(subscription_id: str) -> dict:
        """
        Cancel a subscription immediately.

        Args:
            subscription_id: Stripe subscription ID

        Returns:
            Updated subscription data
        """
        try:
            subscription = stripe.Subscription.cancel(subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.info(f"Subscription {subscription_id} already gone from Stripe")
                return {"id": subscription_id, "status": "canceled"}
            logger.error(f"Error canceling subscription: {e}")
            raise ProviderUnavailableError(str(e)) from e
        except stripe.StripeError as e:
            logger.error(f"Error canceling subscription: {e}")
            raise ProviderUnavailableError(str(e)) from e

        return {
            "id": subscription.get("id"),
            "status": subscription.get("status"),
        }

    # ==========================================================================
    # Checkout
    # ==========================================================================

    @staticmethod
    def create_checkout_session(
        user_id: UUID,
        plan: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> dict:
        """
        Create a Stripe Checkout session for a plan.

        The user id travels in metadata so the webhook can find the user.

        Returns:
            Checkout session data with URL
        """
        setting_name = PLAN_PRICE_SETTINGS.get(plan)
        price_id = getattr(settings, setting_name, "") if setting_name else ""
        if not price_id:
            raise InvalidPlanError(plan)

        metadata = {"user_id": str(user_id), "plan": plan}
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                client_reference_id=str(user_id),
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Error creating checkout session: {e}")
            raise ProviderUnavailableError(str(e)) from e

        return {
            "checkout_url": session.url,
            "session_id": session.id,
        }

    # ==========================================================================
    # Webhooks
    # ==========================================================================

    @staticmethod
    def handle_webhook_event(payload: bytes, sig_header: str, db: Session) -> dict:
        """
        Handle Stripe webhook event.

        Args:
            payload: Raw webhook payload
            sig_header: Stripe signature header
            db: Database session

        Returns:
            Processing result
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                sig_header,
                settings.stripe_webhook_secret,
            )
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise ValueError("Invalid webhook signature") from e

        return StripeService.dispatch_event(event["type"], event["data"]["object"], db)

    @staticmethod
    def handled_events() -> list[str]:
        return sorted(StripeService._event_handlers())

    @staticmethod
    def dispatch_event(event_type: str, data: dict, db: Session) -> dict:
        logger.info(f"Processing webhook: {event_type}")

        handler = StripeService._event_handlers().get(event_type)
        if handler:
            return handler(EntitlementStore(db), data)

        return {"status": "ignored", "event_type": event_type}

    @staticmethod
    def _event_handlers() -> dict:
        return {
            "invoice.payment_succeeded": StripeService._handle_payment_succeeded,
            "customer.subscription.updated": StripeService._handle_subscription_updated,
            "customer.subscription.deleted": StripeService._handle_subscription_deleted,
            "invoice.payment_failed": StripeService._handle_payment_failed,
            "charge.refunded": StripeService._handle_charge_refunded,
        }

    @staticmethod
    def _resolve_user_id(store: EntitlementStore, subscription_id: Optional[str], metadata) -> Optional[UUID]:
        user_id = (metadata or {}).get("user_id")
        if user_id:
            return UUID(user_id)
        if subscription_id:
            local = store.find_by_billing_ref(subscription_id)
            if local:
                return local.user_id
        return None

    @staticmethod
    def _handle_payment_succeeded(store: EntitlementStore, data: dict) -> dict:
        """Payment confirmed: grant the plan and open a fresh window."""
        subscription_id = data.get("subscription")
        if not subscription_id or not data.get("amount_paid"):
            logger.info(f"Skipping invoice {data.get('id')}: no subscription or zero payment")
            return {"status": "ignored", "invoice_id": data.get("id")}

        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Error retrieving subscription {subscription_id}: {e}")
            raise ProviderUnavailableError(str(e)) from e

        user_id = StripeService._resolve_user_id(
            store, subscription_id, subscription.get("metadata")
        )
        if not user_id:
            logger.warning(f"No user found for subscription {subscription_id}")
            return {"status": "error", "message": "User not found"}

        plan = plan_for_product(_product_id(subscription))
        customer_id = subscription.get("customer")

        # A renewal of a lower tier must not undo an upgrade
        local = store.get_subscription(user_id)
        if (
            local is not None
            and local.is_active
            and local.stripe_subscription_id not in (None, subscription_id)
            and plan_priority(local.plan) > plan_priority(plan)
        ):
            logger.warning(
                f"Payment for {plan} subscription {subscription_id} ignored: "
                f"user {user_id} holds {local.plan} on {local.stripe_subscription_id}"
            )
            StripeService.cancel_lower_tier_subscriptions(
                customer_id, local.stripe_subscription_id, local.plan
            )
            return {"status": "ignored", "user_id": str(user_id), "plan": local.plan}

        Reconciler(store).activate_subscription(
            user_id,
            plan,
            stripe_subscription_id=subscription_id,
            stripe_customer_id=customer_id,
        )
        StripeService.cancel_lower_tier_subscriptions(customer_id, subscription_id, plan)
        return {"status": "success", "user_id": str(user_id), "plan": plan}

    @staticmethod
    def cancel_lower_tier_subscriptions(
        customer_id: Optional[str],
        keep_subscription_id: str,
        plan: str,
    ) -> list[str]:
        """
        Cancel the customer's other active subscriptions ranked below `plan`.

        Runs after a payment is confirmed, so an upgrade never leaves the old
        tier billing alongside the new one. Failures are logged, not raised:
        the entitlement change has already been committed.

        Returns:
            IDs of the subscriptions that were canceled
        """
        if not customer_id:
            return []

        try:
            listing = stripe.Subscription.list(customer=customer_id, status="active", limit=10)
        except stripe.StripeError as e:
            logger.error(f"Error listing subscriptions for customer {customer_id}: {e}")
            return []

        canceled = []
        for other in listing.get("data") or []:
            other_id = other.get("id")
            if other_id == keep_subscription_id:
                continue

            try:
                other_plan = plan_for_product(_product_id(other))
            except InvalidPlanError:
                logger.warning(f"Leaving subscription {other_id}: product not mapped to a plan")
                continue

            if plan_priority(other_plan) >= plan_priority(plan):
                continue

            try:
                StripeService.cancel_subscription(other_id)
            except ProviderUnavailableError as e:
                logger.error(f"Could not cancel lower tier subscription {other_id}: {e}")
                continue

            logger.info(f"Canceled {other_plan} subscription {other_id} in favour of {plan}")
            canceled.append(other_id)

        return canceled

    @staticmethod
    def _handle_subscription_updated(store: EntitlementStore, data: dict) -> dict:
        """Terminal status reverts to free; other changes wait for payment events."""
        subscription_id = data.get("id")
        status = data.get("status")

        if status not in TERMINAL_STATUSES:
            logger.info(f"Subscription {subscription_id} updated to {status}, no entitlement change")
            return {"status": "ignored", "subscription_id": subscription_id}

        user_id = StripeService._resolve_user_id(store, subscription_id, data.get("metadata"))
        if user_id:
            Reconciler(store).revert_to_free(user_id)

        return {"status": "success", "subscription_id": subscription_id}

    @staticmethod
    def _handle_subscription_deleted(store: EntitlementStore, data: dict) -> dict:
        """Handle subscription cancellation."""
        subscription_id = data.get("id")

        user_id = StripeService._resolve_user_id(store, subscription_id, data.get("metadata"))
        if user_id:
            local = store.get_subscription(user_id)
            # A newer subscription may already have replaced this one
            if local and local.stripe_subscription_id not in (None, subscription_id):
                logger.info(f"Ignoring deletion of superseded subscription {subscription_id}")
                return {"status": "ignored", "subscription_id": subscription_id}
            Reconciler(store).revert_to_free(user_id)

        return {"status": "success", "subscription_id": subscription_id}

    @staticmethod
    def _handle_payment_failed(store: EntitlementStore, data: dict) -> dict:
        """Failed renewal: mark past_due so the next check treats the user as free."""
        subscription_id = data.get("subscription")

        local = store.find_by_billing_ref(subscription_id) if subscription_id else None
        if local:
            store.upsert_subscription(local.user_id, status="past_due")
            logger.warning(f"Payment failed for user {local.user_id}, marked past_due")

        return {"status": "processed", "invoice_id": data.get("id")}

    @staticmethod
    def _handle_charge_refunded(store: EntitlementStore, data: dict) -> dict:
        """Full refund reverts to free; a partial refund keeps the plan."""
        charge_id = data.get("id")
        amount = data.get("amount") or 0
        amount_refunded = data.get("amount_refunded") or 0

        user_id = (data.get("metadata") or {}).get("user_id")
        if user_id:
            user_id = UUID(user_id)
        elif data.get("customer"):
            local = store.find_by_customer_ref(data["customer"])
            user_id = local.user_id if local else None

        if not user_id:
            logger.warning(f"No user found for refunded charge {charge_id}")
            return {"status": "ignored", "charge_id": charge_id}

        if amount and amount_refunded >= amount:
            logger.info(f"Full refund on charge {charge_id}, reverting user {user_id} to free")
            Reconciler(store).revert_to_free(user_id)
            return {"status": "success", "charge_id": charge_id, "reverted": True}

        logger.info(
            f"Partial refund on charge {charge_id} ({amount_refunded}/{amount}), "
            f"keeping plan for user {user_id}"
        )
        return {"status": "success", "charge_id": charge_id, "reverted": False}
