"""
Unit tests for CRUD operations
"""

import pytest
from datetime import datetime, UTC
from decimal import Decimal

from src.database.crud import (
    create_twap_session,
    finalize_twap_session,
    get_active_session,
    get_all_deposit_tx_hashes,
    get_trade_history,
    get_twap_session,
    get_wallet_balance,
    clear_trade_history,
    increment_balance,
    increment_session_progress,
    record_deposit,
    record_trade,
    record_withdrawal,
    upsert_trade,
)
from src.database.models import SessionStatus, WithdrawalStatus


async def _new_session(db_session, wallet="0xabc", num_slices=2):
    return await create_twap_session(
        db_session,
        wallet_address=wallet,
        token_in="USDC",
        token_out="MOVE",
        total_amount=Decimal("100"),
        num_slices=num_slices,
        slice_interval_ms=1000,
        slippage_bps=50,
    )


@pytest.mark.asyncio
async def test_create_and_get_active_session(db_session):
    """Test session creation"""
    created = await _new_session(db_session)

    assert created.id is not None
    assert created.status == SessionStatus.ACTIVE.value
    assert created.trades_completed == 0

    active = await get_active_session(db_session, "0xabc")
    assert active is not None
    assert active.id == created.id

    assert await get_active_session(db_session, "0xother") is None


@pytest.mark.asyncio
async def test_session_progress_is_capped(db_session):
    """trades_completed never exceeds num_slices"""
    created = await _new_session(db_session, num_slices=2)

    assert await increment_session_progress(db_session, created.id) == 1
    assert await increment_session_progress(db_session, created.id) == 2
    assert await increment_session_progress(db_session, created.id) is None


@pytest.mark.asyncio
async def test_terminal_session_is_immutable(db_session):
    created = await _new_session(db_session)

    assert await finalize_twap_session(db_session, created.id, SessionStatus.STOPPED) is True
    assert await finalize_twap_session(db_session, created.id, SessionStatus.COMPLETED) is False
    assert await increment_session_progress(db_session, created.id) is None

    row = await get_twap_session(db_session, created.id)
    await db_session.refresh(row)
    assert row.status == SessionStatus.STOPPED.value
    assert row.stopped_at is not None


@pytest.mark.asyncio
async def test_upsert_trade_updates_in_place(db_session):
    """Pending row is updated to success without duplication"""
    values = {
        "id": "trade-1-1-abcd",
        "session_id": None,
        "wallet_address": "0xabc",
        "slice_number": 1,
        "token_in": "USDC",
        "token_out": "MOVE",
        "amount_in": Decimal("10"),
        "amount_out": Decimal("0"),
        "tx_hash": None,
        "status": "pending",
        "error": None,
        "timestamp": datetime.now(UTC),
    }
    await upsert_trade(db_session, values)
    await upsert_trade(db_session, {**values, "status": "success", "tx_hash": "0x1", "amount_out": Decimal("20")})

    trades = await get_trade_history(db_session, wallet_address="0xabc")
    assert len(trades) == 1
    await db_session.refresh(trades[0])
    assert trades[0].status == "success"
    assert trades[0].tx_hash == "0x1"
    assert trades[0].amount_out == Decimal("20")

    assert await clear_trade_history(db_session, "0xabc") == 1
    assert await get_trade_history(db_session) == []


@pytest.mark.asyncio
async def test_balance_increments_are_relative(db_session):
    await increment_balance(db_session, "0xabc", "USDC", deposited=Decimal("100"))
    await increment_balance(db_session, "0xabc", "USDC", deposited=Decimal("50"), traded=Decimal("30"))
    await db_session.commit()

    balance = await get_wallet_balance(db_session, "0xabc", "USDC")
    assert balance.deposited == Decimal("150")
    assert balance.traded == Decimal("30")
    assert balance.available == Decimal("120")


@pytest.mark.asyncio
async def test_record_deposit_is_idempotent_per_tx_hash(db_session):
    assert await record_deposit(db_session, "0xabc", "USDC", Decimal("50"), "0xtx1") is True
    assert await record_deposit(db_session, "0xabc", "USDC", Decimal("50"), "0xtx1") is False

    balance = await get_wallet_balance(db_session, "0xabc", "USDC")
    await db_session.refresh(balance)
    assert balance.deposited == Decimal("50")
    assert await get_all_deposit_tx_hashes(db_session) == ["0xtx1"]


@pytest.mark.asyncio
async def test_failed_withdrawal_does_not_debit(db_session):
    await record_deposit(db_session, "0xabc", "USDC", Decimal("100"), "0xtx1")

    await record_withdrawal(
        db_session, "0xabc", "USDC", Decimal("40"), None, status=WithdrawalStatus.FAILED, error="boom"
    )
    await record_withdrawal(db_session, "0xabc", "USDC", Decimal("25"), "0xw1")

    balance = await get_wallet_balance(db_session, "0xabc", "USDC")
    await db_session.refresh(balance)
    assert balance.withdrawn == Decimal("25")
    assert balance.available == Decimal("75")


@pytest.mark.asyncio
async def test_record_trade_posts_both_legs(db_session):
    await record_deposit(db_session, "0xabc", "USDC", Decimal("100"), "0xtx1")
    await record_trade(db_session, "0xabc", "USDC", Decimal("10"), "MOVE", Decimal("20"))

    usdc = await get_wallet_balance(db_session, "0xabc", "USDC")
    move = await get_wallet_balance(db_session, "0xabc", "MOVE")
    await db_session.refresh(usdc)
    assert usdc.traded == Decimal("10")
    assert usdc.available == Decimal("90")
    assert move.deposited == Decimal("20")
