"""
Unit tests for TradeExecutor (single slice)
"""

from datetime import datetime, UTC
from decimal import Decimal

import pytest

from src.database.models import TradeStatus
from src.services.notification_service import EVENT_BALANCE_UPDATE, EVENT_TRADE_EXECUTED
from src.services.twap import ScheduleRun, TwapConfig
from src.utils.address import normalize_address


WALLET = normalize_address("0xabc")


def make_run(total="100", slices=4, wallet=WALLET) -> ScheduleRun:
    config = TwapConfig(total_amount=Decimal(total), num_slices=slices, slice_interval_ms=1000)
    return ScheduleRun(config=config, wallet_address=wallet, started_at=datetime.now(UTC))


@pytest.mark.asyncio
async def test_successful_slice_posts_to_ledger(executor, ledger, hub):
    await ledger.record_deposit(WALLET, "USDC", Decimal("100"), "0xtx1")
    queue = hub.subscribe()
    run = make_run()

    record = await executor.execute_slice(run)

    assert record.status == TradeStatus.SUCCESS
    assert record.slice_number == 1
    assert record.amount_in == Decimal("25")
    assert record.amount_out == Decimal("50")
    assert record.tx_hash == "0xswap1"
    assert run.trades_completed == 1

    usdc = await ledger.get_balance(WALLET, "USDC")
    move = await ledger.get_balance(WALLET, "MOVE")
    assert usdc.available == Decimal("75")
    assert move.available == Decimal("50")

    first, second = queue.get_nowait(), queue.get_nowait()
    assert first["type"] == EVENT_TRADE_EXECUTED
    assert first["data"]["status"] == "success"
    assert second["type"] == EVENT_BALANCE_UPDATE


@pytest.mark.asyncio
async def test_insufficient_balance_fails_slice_without_swap(executor, ledger, fake_dex):
    await ledger.record_deposit(WALLET, "USDC", Decimal("10"), "0xtx1")
    run = make_run()

    record = await executor.execute_slice(run)

    assert record.status == TradeStatus.FAILED
    assert "Insufficient balance" in record.error
    assert fake_dex.quote_calls == 0
    assert fake_dex.swap_calls == 0
    # Failed slices still count as attempted
    assert run.trades_completed == 1
    assert (await ledger.get_balance(WALLET, "USDC")).available == Decimal("10")


@pytest.mark.asyncio
async def test_swap_failure_is_recorded_not_raised(executor, ledger, fake_dex):
    await ledger.record_deposit(WALLET, "USDC", Decimal("100"), "0xtx1")
    fake_dex.fail_swaps_on = {1}
    run = make_run()

    record = await executor.execute_slice(run)

    assert record.status == TradeStatus.FAILED
    assert record.error == "Transaction failed: EINSUFFICIENT_OUTPUT"
    assert (await ledger.get_balance(WALLET, "USDC")).traded == Decimal("0")

    history = executor.get_history(WALLET)
    assert [r.id for r in history] == [record.id]


@pytest.mark.asyncio
async def test_pending_record_replaced_in_store(executor, ledger, session_maker):
    from src.database import crud

    await ledger.record_deposit(WALLET, "USDC", Decimal("100"), "0xtx1")
    run = make_run()

    record = await executor.execute_slice(run)

    async with session_maker() as session:
        trades = await crud.get_trade_history(session, wallet_address=WALLET)

    assert len(trades) == 1
    assert trades[0].id == record.id
    assert trades[0].status == TradeStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_custodial_run_uses_chain_balance(executor, fake_chain):
    fake_chain.balances["USDC"] = Decimal("1000")
    run = make_run(wallet=None)

    record = await executor.execute_slice(run)

    assert record.status == TradeStatus.SUCCESS
    assert record.wallet_address is None
