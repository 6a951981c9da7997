"""create orders tables

Revision ID: 5c0e7a91d2b4
Revises:
Create Date: 2026-10-12 09:14:27.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '5c0e7a91d2b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUS = ('pending', 'confirmed', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded')
PAYMENT_STATUS = ('pending', 'completed', 'failed', 'refunded')
PAYMENT_METHOD = ('cod', 'net_banking', 'upi', 'card', 'wallet')


def upgrade() -> None:
    """Upgrade schema - catalog snapshot, stock reservations, orders and payments."""

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('stock', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('stock >= 0', name='product_stock_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'coupons',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column(
            'discount_type',
            sa.Enum('percentage', 'fixed', name='coupon_discount_type_enum'),
            nullable=False,
        ),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('min_order_amount', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)

    # Stock reservations
    op.create_table(
        'stock_reservations',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=True),
        sa.Column(
            'status',
            sa.Enum('held', 'committed', 'released', 'restocked', name='stock_reservation_status_enum'),
            server_default='held',
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stock_reservations_order_id', 'stock_reservations', ['order_id'])

    op.create_table(
        'stock_reservation_lines',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('reservation_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='reservation_line_positive_quantity'),
        sa.ForeignKeyConstraint(['reservation_id'], ['stock_reservations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stock_reservation_lines_product_id', 'stock_reservation_lines', ['product_id'])

    # Orders
    op.create_table(
        'order_addresses',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column(
            'address_type',
            sa.Enum('shipping', 'billing', name='order_address_type_enum'),
            nullable=True,
        ),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=False),
        sa.Column('address_line2', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('state', sa.String(length=100), nullable=False),
        sa.Column('pincode', sa.String(length=6), nullable=False),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_addresses_user_id', 'order_addresses', ['user_id'])

    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(length=20), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('shipping_address_id', UUID(as_uuid=True), nullable=False),
        sa.Column('billing_address_id', UUID(as_uuid=True), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('shipping_cost', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('tax', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('coupon_code', sa.String(length=50), nullable=True),
        sa.Column(
            'order_status',
            sa.Enum(*ORDER_STATUS, name='order_status_enum'),
            server_default='pending',
            nullable=True,
        ),
        sa.Column(
            'payment_status',
            sa.Enum(*PAYMENT_STATUS, name='order_payment_status_enum'),
            server_default='pending',
            nullable=True,
        ),
        sa.Column(
            'payment_method',
            sa.Enum(*PAYMENT_METHOD, name='order_payment_method_enum'),
            nullable=False,
        ),
        sa.Column('reservation_id', UUID(as_uuid=True), nullable=True),
        sa.Column('refund_id', sa.String(length=100), nullable=True),
        sa.Column('refund_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('estimated_delivery', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            'subtotal >= 0 AND discount >= 0 AND shipping_cost >= 0 '
            'AND tax >= 0 AND final_amount >= 0',
            name='order_amounts_non_negative',
        ),
        sa.CheckConstraint('discount <= subtotal', name='order_discount_within_subtotal'),
        sa.ForeignKeyConstraint(['shipping_address_id'], ['order_addresses.id']),
        sa.ForeignKeyConstraint(['billing_address_id'], ['order_addresses.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_status_created_at', 'orders', ['order_status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='order_item_positive_quantity'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    # Payment attempts
    op.create_table(
        'order_payments',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column(
            'method',
            sa.Enum(*PAYMENT_METHOD, name='payment_method_enum'),
            nullable=False,
        ),
        sa.Column(
            'status',
            sa.Enum(*PAYMENT_STATUS, name='payment_attempt_status_enum'),
            nullable=False,
        ),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=False),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True),
        sa.Column('gateway_signature', sa.String(length=255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('metadata', JSONB(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_payments_order_id', 'order_payments', ['order_id'])
    op.create_index('ix_order_payments_gateway_order_id', 'order_payments', ['gateway_order_id'], unique=True)
    op.create_index('ix_order_payments_gateway_payment_id', 'order_payments', ['gateway_payment_id'])


def downgrade() -> None:
    """Downgrade schema - Remove orders tables and their enum types."""

    op.drop_index('ix_order_payments_gateway_payment_id', table_name='order_payments')
    op.drop_index('ix_order_payments_gateway_order_id', table_name='order_payments')
    op.drop_index('ix_order_payments_order_id', table_name='order_payments')
    op.drop_table('order_payments')

    op.drop_index('ix_order_items_product_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_status_created_at', table_name='orders')
    op.drop_index('ix_orders_order_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_order_addresses_user_id', table_name='order_addresses')
    op.drop_table('order_addresses')

    op.drop_index('ix_stock_reservation_lines_product_id', table_name='stock_reservation_lines')
    op.drop_table('stock_reservation_lines')
    op.drop_index('ix_stock_reservations_order_id', table_name='stock_reservations')
    op.drop_table('stock_reservations')

    op.drop_index('ix_coupons_code', table_name='coupons')
    op.drop_table('coupons')
    op.drop_table('products')

    for enum_name in (
        'payment_attempt_status_enum',
        'payment_method_enum',
        'order_payment_method_enum',
        'order_payment_status_enum',
        'order_status_enum',
        'order_address_type_enum',
        'stock_reservation_status_enum',
        'coupon_discount_type_enum',
    ):
        op.execute(f'DROP TYPE IF EXISTS {enum_name}')
