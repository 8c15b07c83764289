from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('is_admin', sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('size', sa.String(20), nullable=False),
    )
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('sizes', sa.JSON, nullable=False),
        sa.Column('images', sa.JSON, nullable=False),
        sa.Column('serial_number', sa.String(100), nullable=True),
        sa.Column('count_in_stock', sa.Integer, nullable=False, server_default='0'),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=True, index=True),
        sa.Column('shipping_street', sa.String(200), nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_postal_code', sa.String(20), nullable=False),
        sa.Column('shipping_country', sa.String(100), nullable=False),
        sa.Column('shipping_type', sa.String(20), nullable=False),
        sa.Column('customer_first_name', sa.String(100), nullable=False),
        sa.Column('customer_last_name', sa.String(100), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('shipping_method', sa.String(50), nullable=False),
        sa.Column('items_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stripe_session_id', sa.String(255), nullable=True, unique=True, index=True),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('is_delivered', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('delivered_at', sa.DateTime, nullable=True),
        sa.Column('is_moved_to_sales', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('created_at', sa.DateTime, nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('size', sa.String(20), nullable=False),
        sa.Column('image', sa.String(500), nullable=True),
        sa.Column('serial_number', sa.String(100), nullable=True),
    )


def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('cart_items')
    op.drop_table('users')
