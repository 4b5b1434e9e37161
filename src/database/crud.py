"""
CRUD operations for TWAP Buyback Bot

Async database operations using SQLAlchemy 2.0.
Balance mutations are relative increments (SET col = col + delta) so
concurrent writers never overwrite each other.
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import select, update, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import (
    TwapSession,
    Trade,
    WalletBalance,
    DepositTransaction,
    WithdrawalTransaction,
    SessionStatus,
    WithdrawalStatus,
)


ZERO = Decimal("0")


def _insert(session: AsyncSession, model):
    """Dialect-specific INSERT supporting ON CONFLICT"""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ===========================
# TRADE OPERATIONS
# ===========================


async def upsert_trade(session: AsyncSession, values: Dict[str, Any]) -> None:
    """
    Insert a trade or update it in place (keyed by id)

    Args:
        session: Database session
        values: Trade column values, must include "id"
    """
    stmt = _insert(session, Trade).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Trade.id],
        set_={
            "amount_out": stmt.excluded.amount_out,
            "tx_hash": stmt.excluded.tx_hash,
            "status": stmt.excluded.status,
            "error": stmt.excluded.error,
        },
    )
    await session.execute(stmt)
    await session.commit()


async def get_trade_history(
    session: AsyncSession, limit: int = 100, wallet_address: Optional[str] = None
) -> List[Trade]:
    """
    Get recent trades, newest first

    Args:
        session: Database session
        limit: Max rows
        wallet_address: Filter by wallet (all wallets if None)

    Returns:
        List of Trade
    """
    stmt = select(Trade)
    if wallet_address:
        stmt = stmt.where(Trade.wallet_address == wallet_address)
    stmt = stmt.order_by(Trade.timestamp.desc(), Trade.slice_number.desc()).limit(limit)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_trades_by_session(session: AsyncSession, session_id: int) -> List[Trade]:
    """Get all trades of a TWAP session in slice order"""
    result = await session.execute(
        select(Trade).where(Trade.session_id == session_id).order_by(Trade.slice_number)
    )
    return list(result.scalars().all())


async def clear_trade_history(session: AsyncSession, wallet_address: Optional[str] = None) -> int:
    """
    Delete trade rows

    Returns:
        Number of deleted rows
    """
    stmt = delete(Trade)
    if wallet_address:
        stmt = stmt.where(Trade.wallet_address == wallet_address)

    result = await session.execute(stmt)
    await session.commit()

    logger.info(f"Cleared {result.rowcount} trades (wallet={wallet_address or 'all'})")
    return result.rowcount


# ===========================
# TWAP SESSION OPERATIONS
# ===========================


async def create_twap_session(
    session: AsyncSession,
    wallet_address: Optional[str],
    token_in: str,
    token_out: str,
    total_amount: Decimal,
    num_slices: int,
    slice_interval_ms: int,
    slippage_bps: int,
    started_at: Optional[datetime] = None,
) -> TwapSession:
    """
    Persist a new ACTIVE session

    Returns:
        Created TwapSession
    """
    twap_session = TwapSession(
        wallet_address=wallet_address,
        token_in=token_in,
        token_out=token_out,
        total_amount=total_amount,
        num_slices=num_slices,
        slice_interval_ms=slice_interval_ms,
        slippage_bps=slippage_bps,
        trades_completed=0,
        status=SessionStatus.ACTIVE.value,
        started_at=started_at or datetime.now(UTC),
    )
    session.add(twap_session)
    await session.commit()
    await session.refresh(twap_session)

    logger.info(f"Created TWAP session {twap_session.id} for wallet {wallet_address}")
    return twap_session


async def increment_session_progress(
    session: AsyncSession, session_id: int
) -> Optional[int]:
    """
    trades_completed += 1 for an ACTIVE session below its slice count

    Returns:
        New trades_completed, or None if the session is terminal/full
    """
    stmt = (
        update(TwapSession)
        .where(
            TwapSession.id == session_id,
            TwapSession.status == SessionStatus.ACTIVE.value,
            TwapSession.trades_completed < TwapSession.num_slices,
        )
        .values(trades_completed=TwapSession.trades_completed + 1)
        .returning(TwapSession.trades_completed)
    )
    result = await session.execute(stmt)
    new_value = result.scalar_one_or_none()
    await session.commit()
    return new_value


async def set_session_next_slice(
    session: AsyncSession, session_id: int, next_slice_at: Optional[datetime]
) -> None:
    """Persist the next planned slice time of an ACTIVE session"""
    await session.execute(
        update(TwapSession)
        .where(TwapSession.id == session_id, TwapSession.status == SessionStatus.ACTIVE.value)
        .values(next_slice_at=next_slice_at)
    )
    await session.commit()


async def finalize_twap_session(
    session: AsyncSession,
    session_id: int,
    status: SessionStatus,
    stopped_at: Optional[datetime] = None,
) -> bool:
    """
    Move an ACTIVE session to a terminal status

    Terminal sessions are never touched again (WHERE status = 'active').

    Returns:
        True if the session was transitioned
    """
    result = await session.execute(
        update(TwapSession)
        .where(TwapSession.id == session_id, TwapSession.status == SessionStatus.ACTIVE.value)
        .values(
            status=status.value,
            stopped_at=stopped_at or datetime.now(UTC),
            next_slice_at=None,
        )
    )
    await session.commit()
    return result.rowcount > 0


async def get_active_session(
    session: AsyncSession, wallet_address: Optional[str] = None
) -> Optional[TwapSession]:
    """Get the newest ACTIVE session (optionally for one wallet)"""
    stmt = select(TwapSession).where(TwapSession.status == SessionStatus.ACTIVE.value)
    if wallet_address:
        stmt = stmt.where(TwapSession.wallet_address == wallet_address)
    stmt = stmt.order_by(TwapSession.id.desc()).limit(1)

    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_sessions(session: AsyncSession) -> List[TwapSession]:
    """Get every ACTIVE session"""
    result = await session.execute(
        select(TwapSession).where(TwapSession.status == SessionStatus.ACTIVE.value)
    )
    return list(result.scalars().all())


async def get_twap_session(session: AsyncSession, session_id: int) -> Optional[TwapSession]:
    """Get session by id"""
    result = await session.execute(select(TwapSession).where(TwapSession.id == session_id))
    return result.scalar_one_or_none()


async def get_all_sessions(
    session: AsyncSession, limit: int = 50, wallet_address: Optional[str] = None
) -> List[TwapSession]:
    """Get sessions, newest first"""
    stmt = select(TwapSession)
    if wallet_address:
        stmt = stmt.where(TwapSession.wallet_address == wallet_address)
    stmt = stmt.order_by(TwapSession.id.desc()).limit(limit)

    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# WALLET BALANCE OPERATIONS
# ===========================


async def get_wallet_balance(
    session: AsyncSession, wallet_address: str, token: str
) -> Optional[WalletBalance]:
    """Get balance row for (wallet, token) or None"""
    result = await session.execute(
        select(WalletBalance).where(
            WalletBalance.wallet_address == wallet_address,
            WalletBalance.token == token,
        )
    )
    return result.scalar_one_or_none()


async def get_all_wallet_balances(session: AsyncSession, wallet_address: str) -> List[WalletBalance]:
    """Get every token balance row of a wallet"""
    result = await session.execute(
        select(WalletBalance).where(WalletBalance.wallet_address == wallet_address)
    )
    return list(result.scalars().all())


async def increment_balance(
    session: AsyncSession,
    wallet_address: str,
    token: str,
    deposited: Decimal = ZERO,
    withdrawn: Decimal = ZERO,
    traded: Decimal = ZERO,
) -> None:
    """
    Atomically add deltas to a (wallet, token) balance row, creating it if missing

    Does not commit - the caller owns the transaction.
    """
    now = datetime.now(UTC)
    stmt = _insert(session, WalletBalance).values(
        wallet_address=wallet_address,
        token=token,
        deposited=deposited,
        withdrawn=withdrawn,
        traded=traded,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[WalletBalance.wallet_address, WalletBalance.token],
        set_={
            "deposited": WalletBalance.deposited + stmt.excluded.deposited,
            "withdrawn": WalletBalance.withdrawn + stmt.excluded.withdrawn,
            "traded": WalletBalance.traded + stmt.excluded.traded,
            "updated_at": now,
        },
    )
    await session.execute(stmt)


async def record_deposit(
    session: AsyncSession,
    wallet_address: str,
    token: str,
    amount: Decimal,
    tx_hash: Optional[str] = None,
) -> bool:
    """
    Append a deposit row and credit `deposited` in one transaction

    A tx_hash already present is a no-op (ON CONFLICT DO NOTHING), so a
    chain transaction is credited at most once.

    Returns:
        True if credited, False if tx_hash was already recorded
    """
    stmt = (
        _insert(session, DepositTransaction)
        .values(
            wallet_address=wallet_address,
            token=token,
            amount=amount,
            tx_hash=tx_hash,
            confirmed=True,
            created_at=datetime.now(UTC),
        )
        .on_conflict_do_nothing(index_elements=[DepositTransaction.tx_hash])
        .returning(DepositTransaction.id)
    )
    result = await session.execute(stmt)
    inserted_id = result.scalar_one_or_none()

    if inserted_id is None:
        await session.rollback()
        logger.debug(f"Deposit {tx_hash} already recorded, skipping credit")
        return False

    await increment_balance(session, wallet_address, token, deposited=amount)
    await session.commit()
    return True


async def record_withdrawal(
    session: AsyncSession,
    wallet_address: str,
    token: str,
    amount: Decimal,
    tx_hash: Optional[str],
    status: WithdrawalStatus = WithdrawalStatus.SUCCESS,
    error: Optional[str] = None,
) -> WithdrawalTransaction:
    """
    Append a withdrawal row; only SUCCESS increments `withdrawn`

    Returns:
        Created WithdrawalTransaction
    """
    withdrawal = WithdrawalTransaction(
        wallet_address=wallet_address,
        token=token,
        amount=amount,
        tx_hash=tx_hash,
        status=status.value,
        error=error,
    )
    session.add(withdrawal)

    if status == WithdrawalStatus.SUCCESS:
        await increment_balance(session, wallet_address, token, withdrawn=amount)

    await session.commit()
    await session.refresh(withdrawal)
    return withdrawal


async def record_trade(
    session: AsyncSession,
    wallet_address: str,
    token_in: str,
    amount_in: Decimal,
    token_out: str,
    amount_out: Decimal,
) -> None:
    """
    Post a swap: traded += amount_in on token_in, deposited += amount_out on token_out
    """
    await increment_balance(session, wallet_address, token_in, traded=amount_in)
    if amount_out > ZERO:
        await increment_balance(session, wallet_address, token_out, deposited=amount_out)
    await session.commit()


# ===========================
# DEPOSIT / WITHDRAWAL QUERIES
# ===========================


async def get_deposit_by_tx_hash(session: AsyncSession, tx_hash: str) -> Optional[DepositTransaction]:
    """Get deposit by chain transaction hash"""
    result = await session.execute(
        select(DepositTransaction).where(DepositTransaction.tx_hash == tx_hash)
    )
    return result.scalar_one_or_none()


async def get_deposits_for_wallet(session: AsyncSession, wallet_address: str) -> List[DepositTransaction]:
    """Get deposits of a wallet, newest first"""
    result = await session.execute(
        select(DepositTransaction)
        .where(DepositTransaction.wallet_address == wallet_address)
        .order_by(DepositTransaction.created_at.desc(), DepositTransaction.id.desc())
    )
    return list(result.scalars().all())


async def get_all_deposit_tx_hashes(session: AsyncSession) -> List[str]:
    """Get every recorded deposit tx hash (monitor dedup seed)"""
    result = await session.execute(
        select(DepositTransaction.tx_hash).where(DepositTransaction.tx_hash.is_not(None))
    )
    return [row for row in result.scalars().all()]


async def get_withdrawals_for_wallet(
    session: AsyncSession, wallet_address: str
) -> List[WithdrawalTransaction]:
    """Get withdrawals of a wallet, newest first"""
    result = await session.execute(
        select(WithdrawalTransaction)
        .where(WithdrawalTransaction.wallet_address == wallet_address)
        .order_by(WithdrawalTransaction.created_at.desc(), WithdrawalTransaction.id.desc())
    )
    return list(result.scalars().all())
