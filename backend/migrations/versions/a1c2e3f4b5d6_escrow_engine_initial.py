"""escrow engine initial schema

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c2e3f4b5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False),
        sa.Column('phone_verified', sa.Boolean(), nullable=False),
        sa.Column('country', sa.String(length=2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_email', ['email'], unique=True)
        batch_op.create_index('ix_users_phone', ['phone'], unique=True)

    op.create_table(
        'design_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('buyer_id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.String(length=64), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('revisions_allowed', sa.Integer(), nullable=False),
        sa.Column('revisions_used', sa.Integer(), nullable=False),
        sa.Column('deadline_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('visible_delivered_at', sa.DateTime(), nullable=True),
        sa.Column('confirm_due_at', sa.DateTime(), nullable=True),
        sa.Column('delivery_delay_minutes', sa.Integer(), nullable=False),
        sa.Column('delivery_note', sa.String(length=400), nullable=True),
        sa.Column('revision_note', sa.String(length=400), nullable=True),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('disputed_at', sa.DateTime(), nullable=True),
        sa.Column('disputed_by', sa.Integer(), nullable=True),
        sa.Column('dispute_resolution', sa.String(length=16), nullable=True),
        sa.Column('dispute_resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.Integer(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('auto_confirmed', sa.Boolean(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=400), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id']),
        sa.ForeignKeyConstraint(['disputed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('design_orders', schema=None) as batch_op:
        batch_op.create_index('ix_design_orders_order_number', ['order_number'], unique=True)
        batch_op.create_index('ix_design_orders_buyer_id', ['buyer_id'], unique=False)
        batch_op.create_index('ix_design_orders_seller_id', ['seller_id'], unique=False)
        batch_op.create_index('ix_design_orders_service_id', ['service_id'], unique=False)
        batch_op.create_index('ix_design_orders_status', ['status'], unique=False)
        batch_op.create_index('ix_design_orders_visible_delivered_at', ['visible_delivered_at'], unique=False)
        batch_op.create_index('ix_design_orders_confirm_due_at', ['confirm_due_at'], unique=False)

    op.create_table(
        'escrow_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('held_minor', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('payment_reference', sa.String(length=80), nullable=True),
        sa.Column('held_at', sa.DateTime(), nullable=True),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
        sa.Column('settled_by', sa.Integer(), nullable=True),
        sa.Column('settlement_kind', sa.String(length=16), nullable=True),
        sa.Column('seller_share_minor', sa.BigInteger(), nullable=True),
        sa.Column('buyer_share_minor', sa.BigInteger(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['design_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['settled_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference'),
    )
    with op.batch_alter_table('escrow_records', schema=None) as batch_op:
        batch_op.create_index('ix_escrow_records_order_id', ['order_id'], unique=True)
        batch_op.create_index('ix_escrow_records_status', ['status'], unique=False)

    op.create_table(
        'escrow_transitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('escrow_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=16), nullable=False),
        sa.Column('to_status', sa.String(length=16), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=False),
        sa.Column('reason', sa.String(length=240), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['escrow_id'], ['escrow_records.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'idempotency_key', name='uq_escrow_transition_order_key'),
    )
    with op.batch_alter_table('escrow_transitions', schema=None) as batch_op:
        batch_op.create_index('ix_escrow_transitions_escrow_id', ['escrow_id'], unique=False)
        batch_op.create_index('ix_escrow_transitions_order_id', ['order_id'], unique=False)

    op.create_table(
        'order_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('event', sa.String(length=64), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=True),
        sa.Column('note', sa.String(length=250), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=True),
        sa.Column('visible_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['design_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('order_events', schema=None) as batch_op:
        batch_op.create_index('ix_order_events_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_events_actor_user_id', ['actor_user_id'], unique=False)
        batch_op.create_index('ix_order_events_idempotency_key', ['idempotency_key'], unique=True)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('balance_minor', sa.BigInteger(), nullable=False),
        sa.Column('escrow_frozen_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('wallets', schema=None) as batch_op:
        batch_op.create_index('ix_wallets_user_id', ['user_id'], unique=True)

    op.create_table(
        'wallet_txns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=80), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=False),
        sa.Column('note', sa.String(length=240), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('wallet_txns', schema=None) as batch_op:
        batch_op.create_index('ix_wallet_txns_wallet_id', ['wallet_id'], unique=False)
        batch_op.create_index('ix_wallet_txns_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_wallet_txns_reference', ['reference'], unique=False)
        batch_op.create_index('ix_wallet_txns_idempotency_key', ['idempotency_key'], unique=True)

    op.create_table(
        'buyer_risk_scores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.Integer(), nullable=False),
        sa.Column('total_orders', sa.Integer(), nullable=False),
        sa.Column('completed_orders', sa.Integer(), nullable=False),
        sa.Column('disputed_orders', sa.Integer(), nullable=False),
        sa.Column('cancelled_orders', sa.Integer(), nullable=False),
        sa.Column('refunded_orders', sa.Integer(), nullable=False),
        sa.Column('risk_score', sa.Float(), nullable=False),
        sa.Column('is_high_risk', sa.Boolean(), nullable=False),
        sa.Column('risk_factors', sa.Text(), nullable=True),
        sa.Column('account_age_days', sa.Integer(), nullable=False),
        sa.Column('is_email_verified', sa.Boolean(), nullable=False),
        sa.Column('is_phone_verified', sa.Boolean(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('buyer_risk_scores', schema=None) as batch_op:
        batch_op.create_index('ix_buyer_risk_scores_buyer_id', ['buyer_id'], unique=True)

    op.create_table(
        'seller_risk_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('block_new_buyers', sa.Boolean(), nullable=False),
        sa.Column('new_buyer_threshold_days', sa.Integer(), nullable=False),
        sa.Column('block_disputed_buyers', sa.Boolean(), nullable=False),
        sa.Column('max_disputes_allowed', sa.Integer(), nullable=False),
        sa.Column('max_concurrent_orders', sa.Integer(), nullable=False),
        sa.Column('delay_delivery_for_risky', sa.Boolean(), nullable=False),
        sa.Column('delay_minutes', sa.Integer(), nullable=False),
        sa.Column('require_email_verified', sa.Boolean(), nullable=False),
        sa.Column('require_phone_verified', sa.Boolean(), nullable=False),
        sa.Column('min_buyer_completed_orders', sa.Integer(), nullable=False),
        sa.Column('blacklisted_countries', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('seller_risk_policies', schema=None) as batch_op:
        batch_op.create_index('ix_seller_risk_policies_seller_id', ['seller_id'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('target_type', sa.String(length=64), nullable=True),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('meta', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('route', sa.String(length=128), nullable=False),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('response_json', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'key', name='uq_idempotency_user_key'),
    )


def downgrade():
    op.drop_table('idempotency_keys')
    op.drop_table('audit_logs')
    op.drop_table('seller_risk_policies')
    op.drop_table('buyer_risk_scores')
    op.drop_table('wallet_txns')
    op.drop_table('wallets')
    op.drop_table('order_events')
    op.drop_table('escrow_transitions')
    op.drop_table('escrow_records')
    op.drop_table('design_orders')
    op.drop_table('users')
