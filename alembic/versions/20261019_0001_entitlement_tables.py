"""Entitlement tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the two per-user entitlement tables:
- user_subscriptions: plan/status/window mirrored from Stripe
- usage_limits: image generation counter for the current window
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # USER SUBSCRIPTIONS
    # ==========================================================================
    op.create_table(
        'user_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('plan', sa.String(50), nullable=False, server_default='free'),
        sa.Column('status', sa.String(50), nullable=False, server_default='active'),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'], unique=True)
    op.create_index(
        'ix_user_subscriptions_stripe_subscription_id',
        'user_subscriptions',
        ['stripe_subscription_id'],
    )
    # Sweep scans active rows by period end
    op.create_index(
        'ix_user_subscriptions_status_period_end',
        'user_subscriptions',
        ['status', 'current_period_end'],
    )

    # ==========================================================================
    # USAGE LIMITS
    # ==========================================================================
    op.create_table(
        'usage_limits',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('image_generations_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_generations_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('image_generations_used >= 0', name='ck_usage_limits_used_non_negative'),
    )
    op.create_index('ix_usage_limits_user_id', 'usage_limits', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_usage_limits_user_id', table_name='usage_limits')
    op.drop_table('usage_limits')
    op.drop_index('ix_user_subscriptions_status_period_end', table_name='user_subscriptions')
    op.drop_index('ix_user_subscriptions_stripe_subscription_id', table_name='user_subscriptions')
    op.drop_index('ix_user_subscriptions_user_id', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
