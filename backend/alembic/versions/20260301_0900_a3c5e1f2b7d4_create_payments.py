"""Create payments table

Revision ID: a3c5e1f2b7d4
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a3c5e1f2b7d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the payments table and its enums."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    op.execute("CREATE TYPE paymentstatus AS ENUM ('pending', 'processing', 'completed', 'failed', 'timeout', 'cancelled')")
    op.execute("CREATE TYPE verificationstatus AS ENUM ('pending', 'verified', 'failed', 'timeout')")
    op.execute("CREATE TYPE paymentmethod AS ENUM ('card', 'upi', 'netbanking', 'wallet', 'cod', 'online')")

    op.create_table(
        'payments',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('order_ref', sa.String(), nullable=True),
        sa.Column('pending_order_token', sa.String(), nullable=True),
        sa.Column('user_ref', sa.String(), nullable=False),
        sa.Column('gateway_order_id', sa.String(), nullable=True),
        sa.Column('gateway_payment_id', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('method', postgresql.ENUM(name='paymentmethod', create_type=False), nullable=False, server_default='online'),
        sa.Column('status', postgresql.ENUM(name='paymentstatus', create_type=False), nullable=False, server_default='pending'),
        sa.Column('verification_status', postgresql.ENUM(name='verificationstatus', create_type=False), nullable=False, server_default='pending'),
        sa.Column('verification_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_verification_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('timeout_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_order_id', name='uq_payments_gateway_order_id'),
        sa.CheckConstraint('retry_count <= max_retries', name='ck_payments_retry_bound'),
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'])
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'])
    op.create_index(op.f('ix_payments_order_ref'), 'payments', ['order_ref'])
    op.create_index(op.f('ix_payments_user_ref'), 'payments', ['user_ref'])
    op.create_index(op.f('ix_payments_gateway_payment_id'), 'payments', ['gateway_payment_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])
    op.create_index(op.f('ix_payments_next_retry_at'), 'payments', ['next_retry_at'])
    op.create_index(op.f('ix_payments_timeout_at'), 'payments', ['timeout_at'])

    # Composite indexes for the sweep queries
    op.create_index('ix_payments_status_timeout_at', 'payments', ['status', 'timeout_at'])
    op.create_index('ix_payments_status_retry', 'payments', ['status', 'retry_count', 'next_retry_at'])
    op.create_index('ix_payments_user_status_created', 'payments', ['user_ref', 'status', 'created_at'])


def downgrade() -> None:
    """Drop the payments table and its enums."""
    op.drop_table('payments')

    op.execute('DROP TYPE IF EXISTS paymentmethod')
    op.execute('DROP TYPE IF EXISTS verificationstatus')
    op.execute('DROP TYPE IF EXISTS paymentstatus')
