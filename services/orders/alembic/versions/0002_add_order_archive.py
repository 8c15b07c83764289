"""add order archive and job locks

Revision ID: 0002
Revises: 0001_init

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'order_archives',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('source_order_id', sa.Integer, nullable=False, unique=True, index=True),
        sa.Column('user_id', sa.Integer, nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=False),
        sa.Column('customer_details', sa.JSON, nullable=False),
        sa.Column('items', sa.JSON, nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('shipping_method', sa.String(50), nullable=False),
        sa.Column('items_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stripe_session_id', sa.String(255), nullable=True),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('is_delivered', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('delivered_at', sa.DateTime, nullable=True),
        sa.Column('is_moved_to_sales', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('moved_to_sales_at', sa.DateTime, nullable=True),
        sa.Column('order_created_at', sa.DateTime, nullable=False),
        sa.Column('archived_at', sa.DateTime, nullable=False),
    )
    op.create_table(
        'job_locks',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('owner', sa.String(100), nullable=False),
        sa.Column('acquired_at', sa.DateTime, nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=False),
    )

    # Orders are marked before the sweep deletes them
    op.add_column('orders', sa.Column('moved_to_sales_at', sa.DateTime, nullable=True))
    op.add_column('orders', sa.Column('archive_marked_at', sa.DateTime, nullable=True))


def downgrade() -> None:
    op.drop_column('orders', 'archive_marked_at')
    op.drop_column('orders', 'moved_to_sales_at')
    op.drop_table('job_locks')
    op.drop_table('order_archives')
