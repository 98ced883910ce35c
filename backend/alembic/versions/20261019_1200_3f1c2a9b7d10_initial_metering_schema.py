"""Initial schema: plans, billing customers, subscriptions, usage counters, overrides, audit, billing events, errors

Revision ID: 3f1c2a9b7d10
Revises: 
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list:
    return [
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables for the metering service."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    op.execute(
        "CREATE TYPE subscriptionstatus AS ENUM "
        "('active', 'trialing', 'past_due', 'canceled', 'incomplete', 'incomplete_expired', 'unpaid')"
    )
    op.execute(
        "CREATE TYPE billingeventstatus AS ENUM ('received', 'processing', 'processed', 'skipped', 'failed')"
    )

    # 1. Plans
    op.create_table(
        'plans',
        *_base_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price_monthly', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='BRL'),
        sa.Column('stripe_price_id', sa.String(), nullable=True),
        sa.Column('features', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_index(op.f('ix_plans_stripe_price_id'), 'plans', ['stripe_price_id'], unique=True)
    op.create_index(op.f('ix_plans_active'), 'plans', ['active'])

    # 2. Billing customers
    op.create_table(
        'billing_customers',
        *_base_columns(),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('external_customer_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_billing_customers_user_id'), 'billing_customers', ['user_id'], unique=True)
    op.create_index(
        op.f('ix_billing_customers_external_customer_id'), 'billing_customers', ['external_customer_id'], unique=True
    )

    # 3. Subscriptions (depends on plans)
    op.create_table(
        'subscriptions',
        *_base_columns(),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('plan_id', sa.UUID(), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM(name='subscriptionstatus', create_type=False),
            nullable=False,
        ),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('external_subscription_id', sa.String(), nullable=False),
        sa.Column('external_customer_id', sa.String(), nullable=False),
        sa.Column('processor_updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_event_id', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'])
    op.create_index(op.f('ix_subscriptions_plan_id'), 'subscriptions', ['plan_id'])
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'])
    op.create_index(
        op.f('ix_subscriptions_external_subscription_id'), 'subscriptions', ['external_subscription_id'], unique=True
    )
    op.create_index(op.f('ix_subscriptions_external_customer_id'), 'subscriptions', ['external_customer_id'])
    op.create_index('ix_subscriptions_user_status', 'subscriptions', ['user_id', 'status'])

    # 4. Usage counters
    op.create_table(
        'usage_counters',
        *_base_columns(),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('feature', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'feature', 'period_start', name='uq_usage_counters_user_feature_period'),
    )
    op.create_index(op.f('ix_usage_counters_user_id'), 'usage_counters', ['user_id'])

    # 5. Entitlement overrides
    op.create_table(
        'entitlement_overrides',
        *_base_columns(),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('feature', sa.String(), nullable=False),
        sa.Column('limit_value', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'feature', name='uq_entitlement_overrides_user_feature'),
    )
    op.create_index(op.f('ix_entitlement_overrides_user_id'), 'entitlement_overrides', ['user_id'])

    # 6. Audit logs
    op.create_table(
        'audit_logs',
        *_base_columns(),
        sa.Column('actor_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_user_id', sa.UUID(), nullable=True),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_actor_id'), 'audit_logs', ['actor_id'])
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'])
    op.create_index(op.f('ix_audit_logs_target_user_id'), 'audit_logs', ['target_user_id'])
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'])

    # 7. Billing event inbox
    op.create_table(
        'billing_events',
        *_base_columns(),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('processor_created_at', sa.DateTime(), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM(name='billingeventstatus', create_type=False),
            nullable=False,
            server_default='received',
        ),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_billing_events_event_id'), 'billing_events', ['event_id'], unique=True)
    op.create_index(op.f('ix_billing_events_event_type'), 'billing_events', ['event_type'])
    op.create_index(op.f('ix_billing_events_status'), 'billing_events', ['status'])

    # 8. Error logs
    op.create_table(
        'error_logs',
        *_base_columns(),
        sa.Column('error_type', sa.String(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('stack_trace', sa.Text(), nullable=True),
        sa.Column('endpoint', sa.String(), nullable=True),
        sa.Column('user_id', sa.UUID(), nullable=True),
        sa.Column('reference', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_error_logs_error_type'), 'error_logs', ['error_type'])
    op.create_index(op.f('ix_error_logs_reference'), 'error_logs', ['reference'])

    # Seed the default plan used by users without a subscription
    op.execute(
        "INSERT INTO plans (name, price_monthly, currency, features, active) VALUES "
        "('Gratuito', 0, 'BRL', '{\"generations\": 0, \"diagnostics\": 0, \"funnel_analysis\": 0}', true)"
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('error_logs')
    op.drop_table('billing_events')
    op.drop_table('audit_logs')
    op.drop_table('entitlement_overrides')
    op.drop_table('usage_counters')
    op.drop_table('subscriptions')
    op.drop_table('billing_customers')
    op.drop_table('plans')

    op.execute('DROP TYPE IF EXISTS billingeventstatus')
    op.execute('DROP TYPE IF EXISTS subscriptionstatus')
