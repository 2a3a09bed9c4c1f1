"""Create points ledger tables.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create tenants, customers, points_batches, points_transactions, wallet_snapshots."""
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('external_user_id', sa.BigInteger(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('whatsapp', sa.String(50), nullable=True),
        sa.Column('locale', sa.String(16), server_default='en'),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.UniqueConstraint('tenant_id', 'external_user_id', name='uq_tenant_external_user'),
    )
    op.create_index('ix_customers_tenant_email', 'customers', ['tenant_id', 'email'])

    op.create_table(
        'points_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('external_order_id', sa.String(100), nullable=True),
        sa.Column('points_total', sa.Integer(), nullable=False),
        sa.Column('points_remaining', sa.Integer(), nullable=False),
        sa.Column('purchased_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.CheckConstraint(
            'points_remaining >= 0 AND points_remaining <= points_total',
            name='ck_points_batches_remaining_bounds'
        ),
    )
    op.create_index(
        'ix_points_batches_fifo', 'points_batches',
        ['tenant_id', 'customer_id', 'status', 'purchased_at']
    )
    op.create_index('ix_points_batches_expiry', 'points_batches', ['status', 'expires_at'])

    op.create_table(
        'points_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('reference_id', sa.String(100), nullable=True),
        sa.Column('external_event_id', sa.String(100), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['points_batches.id']),
        sa.UniqueConstraint('tenant_id', 'external_event_id', name='uq_tenant_external_event'),
    )
    op.create_index(
        'ix_points_transactions_tenant_customer', 'points_transactions',
        ['tenant_id', 'customer_id']
    )

    op.create_table(
        'wallet_snapshots',
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('points_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('tenant_id', 'customer_id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
    )


def downgrade():
    """Drop points ledger tables."""
    op.drop_table('wallet_snapshots')
    op.drop_index('ix_points_transactions_tenant_customer', table_name='points_transactions')
    op.drop_table('points_transactions')
    op.drop_index('ix_points_batches_expiry', table_name='points_batches')
    op.drop_index('ix_points_batches_fifo', table_name='points_batches')
    op.drop_table('points_batches')
    op.drop_index('ix_customers_tenant_email', table_name='customers')
    op.drop_table('customers')
    op.drop_table('tenants')
