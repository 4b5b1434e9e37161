"""
Unit tests for DepositMonitor
"""

from decimal import Decimal

import pytest

from config.config import USDC_TOKEN
from conftest import CUSTODIAL_ADDRESS, FakeChain
from src.services.chain_schemas import ChainTransaction
from src.services.deposit_monitor_service import DepositMonitor, extract_deposit
from src.services.ledger_service import LedgerService


SENDER = "0xabc"


def usdc_transfer(tx_hash: str, raw_amount: int, sender: str = SENDER, success: bool = True, **extra) -> ChainTransaction:
    payload = {
        "hash": tx_hash,
        "type": "user_transaction",
        "sender": sender,
        "success": success,
        "vm_status": "Executed successfully" if success else "Move abort",
        "payload": {
            "type": "entry_function_payload",
            "function": "0x1::coin::transfer",
            "type_arguments": [USDC_TOKEN],
            "arguments": [CUSTODIAL_ADDRESS, str(raw_amount)],
        },
        "events": [],
    }
    payload.update(extra)
    return ChainTransaction.model_validate(payload)


def move_event_transfer(tx_hash: str, raw_amount: int) -> ChainTransaction:
    return ChainTransaction.model_validate(
        {
            "hash": tx_hash,
            "type": "user_transaction",
            "sender": SENDER,
            "success": True,
            "payload": {
                "function": "0x1::primary_fungible_store::transfer",
                "type_arguments": [],
                "arguments": [],
            },
            "events": [
                {
                    "type": "0x1::coin::CoinDeposit",
                    "guid": {"account_address": "0x0", "creation_number": "0"},
                    "data": {
                        "account": CUSTODIAL_ADDRESS,
                        "amount": str(raw_amount),
                        "coin_type": "0x1::aptos_coin::AptosCoin",
                    },
                }
            ],
        }
    )


@pytest.fixture
def monitor(fake_chain, ledger, hub) -> DepositMonitor:
    return DepositMonitor(fake_chain, ledger, hub=hub)


def test_extract_deposit_from_payload():
    deposit = extract_deposit(usdc_transfer("0x1", 50_000_000), CUSTODIAL_ADDRESS)

    assert deposit is not None
    assert deposit.token == "USDC"
    assert deposit.amount == Decimal("50")
    assert deposit.sender == SENDER


def test_extract_deposit_from_event():
    deposit = extract_deposit(move_event_transfer("0x2", 250_000_000), CUSTODIAL_ADDRESS)

    assert deposit is not None
    assert deposit.token == "MOVE"
    assert deposit.amount == Decimal("2.5")


def test_extract_deposit_ignores_other_recipients():
    tx = usdc_transfer("0x3", 1_000_000)
    assert extract_deposit(tx, "0x" + "c" * 64) is None


@pytest.mark.asyncio
async def test_deposit_credited_exactly_once(fake_chain, ledger, monitor):
    """Same transaction seen by repeated scans and a fresh monitor is credited once"""
    fake_chain.transactions = [usdc_transfer("0xdep1", 50_000_000)]

    assert await monitor.scan() == 1
    assert await monitor.scan() == 0

    restarted = DepositMonitor(fake_chain, LedgerService(ledger.session_maker))
    assert await restarted.scan() == 0
    assert restarted.is_processed("0xdep1")

    balance = await ledger.get_balance(SENDER, "USDC")
    assert balance.deposited == Decimal("50")
    assert balance.available == Decimal("50")


@pytest.mark.asyncio
async def test_scan_skips_failed_pending_and_self_sent(fake_chain, ledger, monitor):
    fake_chain.transactions = [
        usdc_transfer("0xfailed", 10_000_000, success=False),
        usdc_transfer("0xpending", 10_000_000, type="pending_transaction"),
        usdc_transfer("0xself", 10_000_000, sender=CUSTODIAL_ADDRESS),
        move_event_transfer("0xmove", 100_000_000),
    ]

    assert await monitor.scan() == 1

    assert (await ledger.get_balance(SENDER, "USDC")).available == Decimal("0")
    assert (await ledger.get_balance(SENDER, "MOVE")).available == Decimal("1")
    # Pending transactions are looked at again on the next scan
    assert not monitor.is_processed("0xpending")
    assert monitor.is_processed("0xfailed")


@pytest.mark.asyncio
async def test_scan_notifies_subscribers(fake_chain, monitor, hub):
    queue = hub.subscribe()
    fake_chain.transactions = [usdc_transfer("0xdep1", 50_000_000)]

    await monitor.scan()

    message = queue.get_nowait()
    assert message["type"] == "balance_update"
    assert message["data"]["deposit"] is True


@pytest.mark.asyncio
async def test_scan_without_wallet_is_noop(ledger):
    monitor = DepositMonitor(FakeChain(address=None), ledger)
    assert await monitor.scan() == 0


@pytest.mark.asyncio
async def test_verify_deposit(fake_chain, ledger, monitor):
    fake_chain.transactions = [usdc_transfer("0xdep1", 20_000_000)]

    result = await monitor.verify_deposit("0xdep1", SENDER)
    assert result.success is True
    assert result.amount == Decimal("20")
    assert result.token == "USDC"

    again = await monitor.verify_deposit("0xdep1", SENDER)
    assert again.success is False
    assert again.error == "Transaction already processed"

    assert (await ledger.get_balance(SENDER, "USDC")).deposited == Decimal("20")


@pytest.mark.asyncio
async def test_verify_deposit_rejections(fake_chain, monitor):
    fake_chain.transactions = [
        usdc_transfer("0xdep1", 20_000_000),
        usdc_transfer("0xfailed", 20_000_000, success=False),
        ChainTransaction.model_validate(
            {"hash": "0xother", "sender": SENDER, "success": True, "payload": {"function": "0x1::code::publish"}}
        ),
    ]

    wrong_sender = await monitor.verify_deposit("0xdep1", "0xdef")
    assert wrong_sender.error == "Transaction sender does not match"

    failed = await monitor.verify_deposit("0xfailed", SENDER)
    assert failed.error == "Transaction not found or failed"

    missing = await monitor.verify_deposit("0xmissing", SENDER)
    assert missing.error == "Transaction not found or failed"

    not_deposit = await monitor.verify_deposit("0xother", SENDER)
    assert not_deposit.error == "No valid deposit found in transaction"


@pytest.mark.asyncio
async def test_verify_deposit_requires_wallet(ledger):
    monitor = DepositMonitor(FakeChain(address=None), ledger)
    result = await monitor.verify_deposit("0xdep1", SENDER)
    assert result.error == "Bot wallet not configured"
