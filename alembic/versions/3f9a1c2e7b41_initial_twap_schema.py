"""initial_twap_schema

Revision ID: 3f9a1c2e7b41
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c2e7b41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


AMOUNT = sa.Numeric(36, 18)


def upgrade() -> None:
    """Create sessions, trades, balances, deposits and withdrawals tables."""

    op.create_table(
        'twap_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_address', sa.String(length=100), nullable=True, comment='Owner wallet (custodial ledger key)'),
        sa.Column('token_in', sa.String(length=20), nullable=False, comment='Token sold (symbol)'),
        sa.Column('token_out', sa.String(length=20), nullable=False, comment='Token bought (symbol)'),
        sa.Column('total_amount', AMOUNT, nullable=False, comment='Total amount of token_in'),
        sa.Column('num_slices', sa.Integer(), nullable=False, comment='Number of slices'),
        sa.Column('slice_interval_ms', sa.Integer(), nullable=False, comment='Delay between slices'),
        sa.Column('slippage_bps', sa.Integer(), nullable=False, comment='Slippage tolerance (bps)'),
        sa.Column('trades_completed', sa.Integer(), nullable=False, server_default='0', comment='Slices attempted (success or failed)'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active', comment='active, completed, stopped, failed'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('stopped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_slice_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_twap_sessions_wallet_address', 'twap_sessions', ['wallet_address'])
    op.create_index('ix_twap_sessions_status', 'twap_sessions', ['status'])
    op.create_index('ix_twap_sessions_wallet_status', 'twap_sessions', ['wallet_address', 'status'])

    op.create_table(
        'trades',
        sa.Column('id', sa.String(length=80), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('wallet_address', sa.String(length=100), nullable=True),
        sa.Column('slice_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('token_in', sa.String(length=20), nullable=False),
        sa.Column('token_out', sa.String(length=20), nullable=False),
        sa.Column('amount_in', AMOUNT, nullable=False),
        sa.Column('amount_out', AMOUNT, nullable=False, server_default='0'),
        sa.Column('tx_hash', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending, success, failed'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['twap_sessions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_trades_session_id', 'trades', ['session_id'])
    op.create_index('ix_trades_wallet_address', 'trades', ['wallet_address'])
    op.create_index('ix_trades_timestamp', 'trades', ['timestamp'])

    op.create_table(
        'wallet_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_address', sa.String(length=100), nullable=False),
        sa.Column('token', sa.String(length=20), nullable=False),
        sa.Column('deposited', AMOUNT, nullable=False, server_default='0'),
        sa.Column('withdrawn', AMOUNT, nullable=False, server_default='0'),
        sa.Column('traded', AMOUNT, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wallet_address', 'token', name='uq_wallet_token'),
    )
    op.create_index('ix_wallet_balances_wallet_address', 'wallet_balances', ['wallet_address'])

    op.create_table(
        'deposit_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tx_hash', sa.String(length=100), nullable=True),
        sa.Column('wallet_address', sa.String(length=100), nullable=False),
        sa.Column('token', sa.String(length=20), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('confirmed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash'),
    )
    op.create_index('ix_deposit_transactions_wallet_address', 'deposit_transactions', ['wallet_address'])

    op.create_table(
        'withdrawal_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_address', sa.String(length=100), nullable=False),
        sa.Column('token', sa.String(length=20), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('tx_hash', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_withdrawal_transactions_wallet_address', 'withdrawal_transactions', ['wallet_address'])


def downgrade() -> None:
    """Drop all TWAP bot tables."""
    op.drop_index('ix_withdrawal_transactions_wallet_address', table_name='withdrawal_transactions')
    op.drop_table('withdrawal_transactions')

    op.drop_index('ix_deposit_transactions_wallet_address', table_name='deposit_transactions')
    op.drop_table('deposit_transactions')

    op.drop_index('ix_wallet_balances_wallet_address', table_name='wallet_balances')
    op.drop_table('wallet_balances')

    op.drop_index('ix_trades_timestamp', table_name='trades')
    op.drop_index('ix_trades_wallet_address', table_name='trades')
    op.drop_index('ix_trades_session_id', table_name='trades')
    op.drop_table('trades')

    op.drop_index('ix_twap_sessions_wallet_status', table_name='twap_sessions')
    op.drop_index('ix_twap_sessions_status', table_name='twap_sessions')
    op.drop_index('ix_twap_sessions_wallet_address', table_name='twap_sessions')
    op.drop_table('twap_sessions')
