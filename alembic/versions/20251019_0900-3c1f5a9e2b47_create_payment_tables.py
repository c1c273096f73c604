"""create_payment_tables

Revision ID: 3c1f5a9e2b47
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f5a9e2b47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Orders: only the columns payment processing reads or writes
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(length=100), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('payment_status', sa.String(length=30), nullable=False, server_default='no_payment'),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('payment_metadata', sa.JSON(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=30), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='Order this attempt pays for'),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='payu/razorpay/phonepe/cashfree/cod'),
        sa.Column('correlation_id', sa.String(length=200), nullable=True, comment='Id the provider echoes back (txnid, remote order id, ...)'),
        sa.Column('provider_ref', sa.String(length=200), nullable=True, comment='Provider transaction/payment id'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='ISO-4217'),
        sa.Column('refunded_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending',
                  comment='pending/completed/failed/refunded/partially_refunded/cancelled'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('payment_data', sa.JSON(), nullable=True, comment='Opaque provider payloads, hashes and evidence trail'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'], unique=False)
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=False)
    op.create_index('ix_payments_provider', 'payments', ['provider'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False)
    op.create_index('ix_payments_provider_correlation', 'payments', ['provider', 'correlation_id'], unique=False)
    op.create_index('ix_payments_order_status', 'payments', ['order_id', 'status'], unique=False)

    op.create_table(
        'payment_refunds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('refund_id', sa.String(length=200), nullable=True, comment='Provider refund id'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending',
                  comment='pending/processing/completed/failed'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('refund_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_refunds_id', 'payment_refunds', ['id'], unique=False)
    op.create_index('ix_payment_refunds_payment_id', 'payment_refunds', ['payment_id'], unique=False)
    op.create_index('ix_payment_refunds_refund_id', 'payment_refunds', ['refund_id'], unique=False)

    op.create_table(
        'payment_gateway_settings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('keyword', sa.String(length=50), nullable=False, comment='Provider key, e.g. payu'),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_production', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credentials', sa.JSON(), nullable=True, comment='Provider-specific secrets'),
        sa.Column('configuration', sa.JSON(), nullable=True, comment='Non-secret options and display config'),
        sa.Column('supported_currencies', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('keyword'),
    )
    op.create_index('ix_payment_gateway_settings_id', 'payment_gateway_settings', ['id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_gateway_settings_id', table_name='payment_gateway_settings')
    op.drop_table('payment_gateway_settings')

    op.drop_index('ix_payment_refunds_refund_id', table_name='payment_refunds')
    op.drop_index('ix_payment_refunds_payment_id', table_name='payment_refunds')
    op.drop_index('ix_payment_refunds_id', table_name='payment_refunds')
    op.drop_table('payment_refunds')

    op.drop_index('ix_payments_order_status', table_name='payments')
    op.drop_index('ix_payments_provider_correlation', table_name='payments')
    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_provider', table_name='payments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_index('ix_payments_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
