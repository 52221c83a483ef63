"""
Entitlement Store

Data access for the subscription and usage-limit rows. No policy lives here;
the reconciler decides, the store reads and writes. Every write is keyed by
user id and the conditional writes carry their guard in the WHERE clause so
concurrent handlers coordinate through the database alone.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Subscription, UsageLimit, ACTIVE
from app.services.exceptions import StoreUnavailableError
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


def store_operation(func):
    """Roll back and surface database failures as StoreUnavailableError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Entitlement store failure in {func.__name__}: {e}")
            raise StoreUnavailableError(str(e)) from e

    return wrapper


class EntitlementStore:
    """Per-user access to user_subscriptions and usage_limits."""

    def __init__(self, db: Session):
        self.db = db

    # ==========================================================================
    # Reads
    # ==========================================================================

    @store_operation
    def get_subscription(self, user_id: UUID) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).first()

    @store_operation
    def get_usage(self, user_id: UUID) -> Optional[UsageLimit]:
        return self.db.query(UsageLimit).filter(
            UsageLimit.user_id == user_id
        ).first()

    @store_operation
    def find_by_billing_ref(self, stripe_subscription_id: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    @store_operation
    def find_by_customer_ref(self, stripe_customer_id: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.stripe_customer_id == stripe_customer_id
        ).first()

    @store_operation
    def active_user_ids(self) -> list[UUID]:
        rows = self.db.query(Subscription.user_id).filter(
            Subscription.status == ACTIVE,
        ).all()
        return [row.user_id for row in rows]

    # ==========================================================================
    # Plain writes
    # ==========================================================================

    @store_operation
    def upsert_subscription(self, user_id: UUID, commit: bool = True, **fields) -> Subscription:
        """Create or update the user's subscription row."""
        fields.setdefault("updated_at", utcnow())

        subscription = self.get_subscription(user_id)
        if subscription is None:
            subscription = Subscription(user_id=user_id, **fields)
            self.db.add(subscription)
        else:
            for name, value in fields.items():
                setattr(subscription, name, value)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return subscription

    @store_operation
    def upsert_usage(self, user_id: UUID, commit: bool = True, **fields) -> UsageLimit:
        """Create or update the user's usage row."""
        fields.setdefault("updated_at", utcnow())

        usage = self.get_usage(user_id)
        if usage is None:
            usage = UsageLimit(user_id=user_id, **fields)
            self.db.add(usage)
        else:
            for name, value in fields.items():
                setattr(usage, name, value)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return usage

    @store_operation
    def delete_subscription(self, user_id: UUID, commit: bool = True) -> int:
        deleted = self.db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return deleted

    @store_operation
    def delete_usage(self, user_id: UUID, commit: bool = True) -> int:
        deleted = self.db.query(UsageLimit).filter(
            UsageLimit.user_id == user_id
        ).delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return deleted

    @store_operation
    def delete_entitlements(self, user_id: UUID) -> bool:
        """Delete both rows in one transaction. Returns True if anything existed."""
        removed = self.delete_subscription(user_id, commit=False)
        removed += self.delete_usage(user_id, commit=False)
        self.db.commit()
        self.db.expire_all()
        return removed > 0

    # ==========================================================================
    # Guarded writes
    # ==========================================================================

    @store_operation
    def renew_window(
        self,
        user_id: UUID,
        expected_updated_at: Optional[datetime],
        limit: int,
        period_start: datetime,
        period_end: datetime,
        now: datetime,
    ) -> bool:
        """
        Move both rows onto a new window and reset usage.

        The subscription update only applies if its updated_at still matches
        what the caller read, so two renewals racing on the same user cannot
        both reset the counter.

        Returns:
            False if another writer touched the subscription first
        """
        query = self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == ACTIVE,
        )
        if expected_updated_at is None:
            query = query.filter(Subscription.updated_at.is_(None))
        else:
            query = query.filter(Subscription.updated_at == expected_updated_at)

        updated = query.update(
            {
                Subscription.current_period_start: period_start,
                Subscription.current_period_end: period_end,
                Subscription.updated_at: now,
            },
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            return False

        self.upsert_usage(
            user_id,
            commit=False,
            image_generations_used=0,
            image_generations_limit=limit,
            period_start=period_start,
            period_end=period_end,
            updated_at=now,
        )
        self.db.commit()
        self.db.expire_all()
        return True

    @store_operation
    def try_increment_usage(self, user_id: UUID, now: datetime) -> bool:
        """
        Consume one unit of quota in a single guarded UPDATE.

        The check (used < limit, window still open) and the increment happen
        in the same statement, so concurrent requests at the boundary cannot
        both succeed.
        """
        updated = self.db.query(UsageLimit).filter(
            UsageLimit.user_id == user_id,
            UsageLimit.image_generations_used < UsageLimit.image_generations_limit,
            UsageLimit.period_end > now,
        ).update(
            {
                UsageLimit.image_generations_used: UsageLimit.image_generations_used + 1,
                UsageLimit.updated_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.expire_all()
        return updated == 1

    # ==========================================================================
    # Sweep support
    # ==========================================================================

    @store_operation
    def expired_active_user_ids(self, cutoff: datetime) -> list[UUID]:
        rows = self.db.query(Subscription.user_id).filter(
            *self._expired_active_clause(cutoff)
        ).all()
        return [row.user_id for row in rows]

    @store_operation
    def delete_expired_active(self, user_id: UUID, cutoff: datetime) -> bool:
        """Delete one expired active subscription, re-checking the cutoff."""
        deleted = self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            *self._expired_active_clause(cutoff),
        ).delete(synchronize_session=False)
        if deleted:
            self.delete_usage(user_id, commit=False)
        self.db.commit()
        return deleted > 0

    @store_operation
    def stale_inactive_user_ids(self, cutoff: datetime) -> list[UUID]:
        rows = self.db.query(Subscription.user_id).filter(
            *self._stale_inactive_clause(cutoff)
        ).all()
        return [row.user_id for row in rows]

    @store_operation
    def delete_stale_inactive(self, user_id: UUID, cutoff: datetime) -> bool:
        deleted = self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            *self._stale_inactive_clause(cutoff),
        ).delete(synchronize_session=False)
        if deleted:
            self.delete_usage(user_id, commit=False)
        self.db.commit()
        return deleted > 0

    @store_operation
    def delete_orphaned_usage(self, cutoff: datetime) -> int:
        """Delete ended usage rows that no longer have a subscription."""
        deleted = self.db.query(UsageLimit).filter(
            UsageLimit.period_end < cutoff,
            ~UsageLimit.user_id.in_(select(Subscription.user_id)),
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted

    @staticmethod
    def _expired_active_clause(cutoff: datetime) -> tuple:
        return (
            Subscription.status == ACTIVE,
            Subscription.current_period_end < cutoff,
            or_(Subscription.updated_at.is_(None), Subscription.updated_at < cutoff),
        )

    @staticmethod
    def _stale_inactive_clause(cutoff: datetime) -> tuple:
        return (
            Subscription.status != ACTIVE,
            or_(Subscription.updated_at.is_(None), Subscription.updated_at < cutoff),
        )
