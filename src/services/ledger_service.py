# coding: utf-8
"""
Ledger Service - custodial balance accounting

The only component that mutates wallet balances. Every posting is a relative
increment executed by src.database.crud, so interleaved writers (deposit
monitor, trade executor, withdrawals) never lose updates.

available = max(0, deposited - withdrawn - traded)
"""
import asyncio
from collections import deque
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Deque, Dict, List, Optional, Set, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import SUPPORTED_TOKENS, find_token
from src.core.exceptions import InvalidConfigError, PersistenceUnavailableError
from src.database import crud
from src.database.engine import get_session_maker
from src.database.models import WithdrawalStatus
from src.services.schemas import BalanceSnapshot, DepositRecord, ZERO
from src.utils.address import normalize_address


# Records bound with ledger=True also go to the trades audit log
audit = logger.bind(ledger=True)

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert user/chain numbers to Decimal without float artifacts"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidConfigError(f"Invalid amount: {value}") from e


def token_symbol(token: str) -> str:
    """Normalize a symbol or coin type to the ledger symbol"""
    info = find_token(token)
    if info is None:
        raise InvalidConfigError(f"Unsupported token: {token}")
    return info.symbol


def stored_snapshot(row) -> BalanceSnapshot:
    """WalletBalance row -> snapshot, rounded to whole token units"""
    info = find_token(row.token)
    return BalanceSnapshot(
        token=row.token,
        deposited=info.round_units(row.deposited),
        withdrawn=info.round_units(row.withdrawn),
        traded=info.round_units(row.traded),
    )


@dataclass
class PendingTradePosting:
    """Trade posting that could not be written yet"""

    wallet_address: str
    token_in: str
    amount_in: Decimal
    token_out: str
    amount_out: Decimal


class LedgerService:
    """
    Per-wallet, per-token balance ledger backed by SQLAlchemy

    Trade postings that fail on a store outage are queued in memory and
    re-applied in order before the next ledger mutation. Queued postings are
    already reflected in get_balance() so balance gating stays correct.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()
        self._pending: Deque[PendingTradePosting] = deque()
        self._replay_lock = asyncio.Lock()

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker

    @property
    def pending_postings(self) -> int:
        return len(self._pending)

    # ===========================
    # READS
    # ===========================

    async def get_balance(self, wallet_address: str, token: str) -> BalanceSnapshot:
        """
        Balance of (wallet, token); zeros when no row exists

        Raises:
            PersistenceUnavailableError: store unreachable
        """
        wallet = normalize_address(wallet_address)
        symbol = token_symbol(token)

        try:
            async with self._session_maker() as session:
                row = await crud.get_wallet_balance(session, wallet, symbol)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read balance: {e}") from e

        snapshot = BalanceSnapshot(token=symbol)
        if row is not None:
            snapshot = stored_snapshot(row)
        return self._with_pending(wallet, snapshot)

    async def get_balances(self, wallet_address: str) -> Dict[str, BalanceSnapshot]:
        """Balances of every supported token (zeros for missing rows)"""
        wallet = normalize_address(wallet_address)

        try:
            async with self._session_maker() as session:
                rows = await crud.get_all_wallet_balances(session, wallet)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read balances: {e}") from e

        balances = {symbol: BalanceSnapshot(token=symbol) for symbol in SUPPORTED_TOKENS}
        for row in rows:
            balances[row.token] = stored_snapshot(row)

        return {symbol: self._with_pending(wallet, snap) for symbol, snap in balances.items()}

    async def can_withdraw(self, wallet_address: str, token: str, amount: Number) -> bool:
        """available >= amount"""
        balance = await self.get_balance(wallet_address, token)
        return balance.available >= to_decimal(amount)

    async def is_deposit_recorded(self, tx_hash: str) -> bool:
        try:
            async with self._session_maker() as session:
                return await crud.get_deposit_by_tx_hash(session, tx_hash) is not None
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read deposit: {e}") from e

    async def get_processed_deposit_hashes(self) -> Set[str]:
        try:
            async with self._session_maker() as session:
                return set(await crud.get_all_deposit_tx_hashes(session))
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read deposit hashes: {e}") from e

    async def get_deposits(self, wallet_address: str) -> List[DepositRecord]:
        try:
            async with self._session_maker() as session:
                rows = await crud.get_deposits_for_wallet(session, normalize_address(wallet_address))
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read deposits: {e}") from e
        return [DepositRecord.model_validate(row) for row in rows]

    # ===========================
    # MUTATIONS
    # ===========================

    async def record_deposit(
        self,
        wallet_address: str,
        token: str,
        amount: Number,
        tx_hash: Optional[str] = None,
    ) -> bool:
        """
        Credit a deposit

        Returns:
            True if credited, False if tx_hash was already recorded
        """
        wallet = normalize_address(wallet_address)
        symbol = token_symbol(token)
        value = to_decimal(amount)
        if value <= ZERO:
            raise InvalidConfigError("Deposit amount must be greater than 0")

        await self._replay_pending()

        try:
            async with self._session_maker() as session:
                credited = await crud.record_deposit(session, wallet, symbol, value, tx_hash)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to record deposit: {e}") from e

        if credited:
            audit.info(f"Deposit credited: {value} {symbol} -> {wallet} (tx={tx_hash or 'manual'})")
        return credited

    async def record_withdrawal(
        self,
        wallet_address: str,
        token: str,
        amount: Number,
        tx_hash: Optional[str],
        status: WithdrawalStatus = WithdrawalStatus.SUCCESS,
        error: Optional[str] = None,
    ) -> None:
        """Append a withdrawal row; only SUCCESS increments `withdrawn`"""
        wallet = normalize_address(wallet_address)
        symbol = token_symbol(token)
        value = to_decimal(amount)

        await self._replay_pending()

        try:
            async with self._session_maker() as session:
                await crud.record_withdrawal(session, wallet, symbol, value, tx_hash, status, error)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to record withdrawal: {e}") from e

        audit.info(f"Withdrawal recorded: {value} {symbol} from {wallet} ({status.value}, tx={tx_hash})")

    async def record_trade(
        self,
        wallet_address: str,
        token_in: str,
        amount_in: Number,
        token_out: str,
        amount_out: Number,
    ) -> bool:
        """
        Post a swap: traded += amount_in (token_in), deposited += amount_out (token_out)

        Returns:
            True if written, False if queued for replay
        """
        posting = PendingTradePosting(
            wallet_address=normalize_address(wallet_address),
            token_in=token_symbol(token_in),
            amount_in=to_decimal(amount_in),
            token_out=token_symbol(token_out),
            amount_out=to_decimal(amount_out),
        )
        if posting.amount_in <= ZERO:
            raise InvalidConfigError("Trade amount must be greater than 0")

        await self._replay_pending()

        if self._pending:
            # Keep ordering: never write past an unreplayed posting
            self._pending.append(posting)
            logger.warning(f"Ledger store unavailable, queued trade posting ({len(self._pending)} pending)")
            return False

        try:
            await self._write_trade(posting)
        except SQLAlchemyError as e:
            self._pending.append(posting)
            logger.warning(f"Failed to post trade, queued for replay: {e}")
            return False

        return True

    async def _write_trade(self, posting: PendingTradePosting) -> None:
        async with self._session_maker() as session:
            await crud.record_trade(
                session,
                posting.wallet_address,
                posting.token_in,
                posting.amount_in,
                posting.token_out,
                posting.amount_out,
            )
        audit.info(
            f"Trade posted: {posting.wallet_address} {posting.amount_in} {posting.token_in} "
            f"-> {posting.amount_out} {posting.token_out}"
        )

    async def _replay_pending(self) -> None:
        """Re-apply queued trade postings in order, stopping at the first failure"""
        if not self._pending:
            return

        async with self._replay_lock:
            while self._pending:
                posting = self._pending[0]
                try:
                    await self._write_trade(posting)
                except SQLAlchemyError as e:
                    logger.warning(f"Trade posting replay failed, {len(self._pending)} still pending: {e}")
                    return
                self._pending.popleft()
                logger.info(f"Replayed queued trade posting for {posting.wallet_address}")

    def _with_pending(self, wallet: str, snapshot: BalanceSnapshot) -> BalanceSnapshot:
        """Overlay queued postings onto a stored balance"""
        traded = snapshot.traded
        deposited = snapshot.deposited
        for posting in self._pending:
            if posting.wallet_address != wallet:
                continue
            if posting.token_in == snapshot.token:
                traded += posting.amount_in
            if posting.token_out == snapshot.token:
                deposited += posting.amount_out

        if traded == snapshot.traded and deposited == snapshot.deposited:
            return snapshot
        return snapshot.model_copy(update={"traded": traded, "deposited": deposited})
