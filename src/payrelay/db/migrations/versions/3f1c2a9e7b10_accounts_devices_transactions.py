"""accounts, devices and transactions ledger

Learn: The UNIQUE constraint on transactions.request_id is load-bearing:
TransactionLedger relies on it to turn a replayed webhook into a no-op.

Revision ID: 3f1c2a9e7b10
Revises:
Create Date: 2026-10-19 10:12:41.201377
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_table(
        'devices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('serial', sa.String(length=100), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('serial'),
    )
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('device_serial', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Numeric(), nullable=False),
        sa.Column('request_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id'),
    )
    op.create_index(
        'idx_transactions_account_created',
        'transactions',
        ['account_id', 'created_at'],
    )


def downgrade() -> None:
    op.drop_index('idx_transactions_account_created', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('devices')
    op.drop_table('accounts')
