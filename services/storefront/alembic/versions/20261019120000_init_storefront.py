from alembic import op
import sqlalchemy as sa

revision = "20261019120000"
down_revision = None

UTC_NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255)),
        sa.Column('phone', sa.String(length=64)),
        sa.Column('address', sa.String(length=512)),
        sa.Column('city', sa.String(length=120)),
        sa.Column('state', sa.String(length=120)),
        sa.Column('neighborhood', sa.String(length=120)),
        sa.Column('country', sa.String(length=64)),
        sa.Column('postal_code', sa.String(length=32)),
        sa.Column('auth_user_id', sa.String(length=64)),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
    )
    op.create_index('ix_customers_email', 'customers', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sku', sa.String(length=64), nullable=False, unique=True),
        sa.Column('name', sa.String(length=240), nullable=False),
        sa.Column('slug', sa.String(length=240), nullable=False, server_default=''),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reference', sa.String(length=64), nullable=False, unique=True),
        sa.Column('order_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id')),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_name', sa.String(length=255)),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('payment_provider', sa.String(length=32)),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False),
        sa.Column('shipping_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='MXN'),
        sa.Column('ship_name', sa.String(length=255)),
        sa.Column('ship_address', sa.String(length=512)),
        sa.Column('ship_city', sa.String(length=120)),
        sa.Column('ship_state', sa.String(length=120)),
        sa.Column('ship_country', sa.String(length=64)),
        sa.Column('ship_postal_code', sa.String(length=32)),
        sa.Column('ship_phone', sa.String(length=64)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.CheckConstraint('total_cents = subtotal_cents + shipping_cents + tax_cents', name='ck_orders_total'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('variant_size', sa.String(length=32)),
        sa.Column('variant_color', sa.String(length=64)),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_correlations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.UniqueConstraint('provider', 'external_id', name='uq_order_correlations_provider_external_id'),
    )
    op.create_index('ix_order_correlations_order_id', 'order_correlations', ['order_id'])

    op.create_table(
        'processed_payment_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(length=120)),
        sa.Column('from_status', sa.String(length=32), nullable=False),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('applied_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.UniqueConstraint('provider', 'provider_event_id', name='uq_processed_payment_events_provider_event'),
    )
    op.create_index('ix_processed_payment_events_order_id', 'processed_payment_events', ['order_id'])

    op.create_table(
        'reconciliation_issues',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('current_status', sa.String(length=32), nullable=False),
        sa.Column('attempted_status', sa.String(length=32), nullable=False),
        sa.Column('detail', sa.Text(), nullable=False, server_default=''),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('resolved_at', sa.DateTime()),
        sa.UniqueConstraint('provider', 'provider_event_id', name='uq_reconciliation_issues_provider_event'),
    )
    op.create_index('ix_reconciliation_issues_order_id', 'reconciliation_issues', ['order_id'])

def downgrade():
    op.drop_table('reconciliation_issues')
    op.drop_table('processed_payment_events')
    op.drop_table('order_correlations')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('customers')
