"""
Pytest configuration and fixtures for TWAP Buyback Bot tests

Every test gets its own file-backed SQLite database; the chain and the
DEX aggregator are replaced by in-process fakes.
"""

import asyncio
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from config.config import SUPPORTED_TOKENS
from src.core.exceptions import QuoteError, SwapExecutionError
from src.database.models import Base
from src.services.chain_schemas import ChainTransaction
from src.services.ledger_service import LedgerService
from src.services.notification_service import NotificationHub
from src.services.schemas import SwapQuote
from src.services.twap import TradeExecutor, TwapScheduler
from src.utils.address import normalize_address


CUSTODIAL_ADDRESS = "0x" + "b0" * 32
USER_WALLET = "0xabc"


# ===========================
# FAKES
# ===========================


class FakeChain:
    """In-memory stand-in for ChainService"""

    def __init__(self, address: Optional[str] = CUSTODIAL_ADDRESS, balances: Optional[Dict[str, Decimal]] = None):
        self._address = normalize_address(address) if address else None
        self.balances: Dict[str, Decimal] = balances or {"MOVE": Decimal("0"), "USDC": Decimal("0")}
        self.transactions: List[ChainTransaction] = []
        self.transfers: List[tuple] = []
        self.submitted: List[tuple] = []
        self.transfer_error: Optional[Exception] = None
        self.closed = False

    @property
    def address(self) -> Optional[str]:
        return self._address

    def is_configured(self) -> bool:
        return self._address is not None

    def explorer_url(self, tx_hash: str) -> str:
        return f"https://explorer.test/txn/{tx_hash}"

    async def get_balances(self, address: Optional[str] = None) -> Dict[str, Decimal]:
        return dict(self.balances)

    async def get_account_transactions(self, address: Optional[str] = None, limit: int = 100) -> List[ChainTransaction]:
        return self.transactions[:limit]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        for tx in self.transactions:
            if tx.hash == tx_hash:
                return tx
        return None

    async def transfer(self, destination: str, coin_type: str, raw_amount: int) -> str:
        if self.transfer_error is not None:
            raise self.transfer_error
        self.transfers.append((destination, coin_type, raw_amount))
        return f"0xtransfer{len(self.transfers)}"

    async def submit_entry_function(self, function: str, type_arguments, arguments) -> str:
        self.submitted.append((function, type_arguments, arguments))
        return f"0xswap{len(self.submitted)}"

    async def check_connection(self) -> int:
        return 5

    async def close(self) -> None:
        self.closed = True


class FakeDex:
    """DEX stand-in with a fixed rate and scriptable failures"""

    def __init__(self, rate: Decimal = Decimal("2")):
        self.rate = rate
        self.is_simulation = True
        self.quote_calls = 0
        self.swap_calls = 0
        self.fail_quotes_on: set = set()
        self.fail_swaps_on: set = set()

    async def get_quote(self, amount_in, token_in, token_out, slippage_bps) -> SwapQuote:
        self.quote_calls += 1
        if self.quote_calls in self.fail_quotes_on:
            raise QuoteError("Mosaic API error: no route")
        return SwapQuote(amount_in=amount_in, amount_out=amount_in * self.rate, price_impact=0.1, route=["fake"])

    async def execute_swap(self, amount_in, token_in, token_out, slippage_bps, quote=None) -> str:
        self.swap_calls += 1
        if self.swap_calls in self.fail_swaps_on:
            raise SwapExecutionError("Transaction failed: EINSUFFICIENT_OUTPUT", tx_hash="0xdead")
        return f"0xswap{self.swap_calls}"

    async def get_supported_tokens(self):
        return [{"symbol": info.symbol, "decimals": info.decimals} for info in SUPPORTED_TOKENS.values()]


async def no_sleep(seconds: float) -> None:
    """Scheduler delay that only yields to the loop"""
    await asyncio.sleep(0)


# ===========================
# DATABASE
# ===========================


@pytest.fixture(scope="function")
async def test_db_engine(tmp_path):
    """
    Create test database engine (file-backed SQLite)
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


# ===========================
# SERVICES
# ===========================


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def fake_dex() -> FakeDex:
    return FakeDex()


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def ledger(session_maker) -> LedgerService:
    return LedgerService(session_maker)


@pytest.fixture
def executor(ledger, fake_dex, hub, fake_chain) -> TradeExecutor:
    return TradeExecutor(ledger, fake_dex, hub=hub, chain=fake_chain)


@pytest.fixture
async def scheduler(executor, hub) -> AsyncGenerator[TwapScheduler, None]:
    twap = TwapScheduler(executor, hub=hub, sleep=no_sleep)
    yield twap
    await twap.shutdown()
