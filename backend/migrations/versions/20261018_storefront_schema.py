"""Storefront schema: stores, catalog, stock ledger, orders, payments, order events

Revision ID: 20261018_storefront
Revises:
Create Date: 2026-10-18

This migration adds:
1. stores, store_configs (tenant + store-level flags)
2. products, product_variations, product_price_tiers (catalog and stock counters)
3. orders, order_payments, order_events (lifecycle, payment verifications, outbox)
4. stock_movements (append-only stock ledger)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_storefront'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. STORES
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id', name='pk_stores'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index('ix_stores_code', ['code'], unique=False)
        batch_op.create_index('ix_stores_is_active', ['is_active'], unique=False)

    op.create_table('store_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_store_configs_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_store_configs'),
        sa.UniqueConstraint('store_id', 'key', name='uq_store_configs_store_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('store_configs', schema=None) as batch_op:
        batch_op.create_index('ix_store_configs_store_id', ['store_id'], unique=False)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('retail_price_cents', sa.Integer(), nullable=True),
        sa.Column('wholesale_price_cents', sa.Integer(), nullable=True),
        sa.Column('min_wholesale_qty', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allow_negative_stock', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_products_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('store_id', 'sku', name='uq_products_store_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_products_store_active', ['store_id', 'is_active'], unique=False)

    op.create_table('product_variations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=True),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price_adjustment_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_grade', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('grade_name', sa.String(length=120), nullable=True),
        sa.Column('grade_sizes', sa.JSON(), nullable=True),
        sa.Column('grade_pairs', sa.JSON(), nullable=True),
        sa.Column('flexible_grade_config', sa.JSON(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_product_variations_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_product_variations'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_variations', schema=None) as batch_op:
        batch_op.create_index('ix_product_variations_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_product_variations_product_active', ['product_id', 'is_active'], unique=False)

    op.create_table('product_price_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('tier_order', sa.Integer(), nullable=False),
        sa.Column('tier_type', sa.String(length=32), nullable=False),
        sa.Column('tier_name', sa.String(length=64), nullable=True),
        sa.Column('min_quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_product_price_tiers_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_product_price_tiers'),
        sa.UniqueConstraint('product_id', 'tier_order', name='uq_price_tiers_product_order'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_price_tiers', schema=None) as batch_op:
        batch_op.create_index('ix_product_price_tiers_product_id', ['product_id'], unique=False)

    # ==========================================================================
    # 3. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('order_type', sa.String(length=16), nullable=False, server_default='retail'),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_reserved', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('reservation_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_orders_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_orders_status', ['status'], unique=False)
        batch_op.create_index('ix_orders_store_status_created', ['store_id', 'status', 'created_at'], unique=False)
        batch_op.create_index('ix_orders_reservation_sweep', ['stock_reserved', 'reservation_expires_at'], unique=False)

    op.create_table('order_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('gateway_payment_id', sa.String(length=128), nullable=False),
        sa.Column('gateway_status', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_payments_order_id_orders'),
        sa.PrimaryKeyConstraint('id', name='pk_order_payments'),
        sa.UniqueConstraint('order_id', 'gateway_payment_id', name='uq_order_payments_order_gateway'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_payments', schema=None) as batch_op:
        batch_op.create_index('ix_order_payments_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_payments_status', ['status'], unique=False)

    op.create_table('order_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('old_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_events_order_id_orders'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_order_events_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_order_events'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_events', schema=None) as batch_op:
        batch_op.create_index('ix_order_events_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_events_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_order_events_pending', ['delivered_at', 'delivery_attempts'], unique=False)

    # ==========================================================================
    # 4. STOCK LEDGER
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variation_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=True),
        sa.Column('new_stock', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_stock_movements_store_id_stores'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_movements_product_id_products'),
        sa.ForeignKeyConstraint(['variation_id'], ['product_variations.id'], name='fk_stock_movements_variation_id_product_variations'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_stock_movements_order_id_orders'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index('ix_stock_movements_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_stock_movements_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_stock_movements_variation_id', ['variation_id'], unique=False)
        batch_op.create_index('ix_stock_movements_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_stock_movements_movement_type', ['movement_type'], unique=False)
        batch_op.create_index('ix_stock_movements_created_at', ['created_at'], unique=False)
        batch_op.create_index('ix_stock_movements_order_entity', ['order_id', 'product_id', 'variation_id'], unique=False)
        batch_op.create_index('ix_stock_movements_type_expires', ['movement_type', 'expires_at'], unique=False)


def downgrade():
    op.drop_table('stock_movements')
    op.drop_table('order_events')
    op.drop_table('order_payments')
    op.drop_table('orders')
    op.drop_table('product_price_tiers')
    op.drop_table('product_variations')
    op.drop_table('products')
    op.drop_table('store_configs')
    op.drop_table('stores')
