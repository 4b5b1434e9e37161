# coding: utf-8
"""
Trade Executor - one TWAP slice

pending record -> balance check -> quote -> swap -> record + ledger posting.
Slice failures are recorded on the trade and never raised to the scheduler.
Progress advances for every attempted slice, successful or not.
"""
import uuid
from collections import deque
from datetime import datetime, UTC
from decimal import Decimal
from typing import Deque, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import InsufficientBalanceError, TwapBotError
from src.database import crud
from src.database.models import TradeStatus
from src.services.chain_service import ChainService
from src.services.dex_service import DexService
from src.services.ledger_service import LedgerService
from src.services.notification_service import NotificationHub
from src.services.twap.schemas import ScheduleRun, TradeRecord


class TradeExecutor:
    """
    Executes single slices of a ScheduleRun

    Trade rows are upserted by id (pending first, then success/failed).
    When the store is down the executor keeps going on in-memory history.
    """

    HISTORY_SIZE = 1000

    def __init__(
        self,
        ledger: LedgerService,
        dex: DexService,
        hub: Optional[NotificationHub] = None,
        chain: Optional[ChainService] = None,
    ):
        self.ledger = ledger
        self.dex = dex
        self.hub = hub or NotificationHub()
        self.chain = chain
        self._history: Deque[TradeRecord] = deque(maxlen=self.HISTORY_SIZE)

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        return self.ledger.session_maker

    # ===========================
    # BALANCES
    # ===========================

    async def available_balance(self, wallet_address: Optional[str], token: str) -> Optional[Decimal]:
        """
        Spendable amount for a schedule

        Ledger `available` for a wallet; custodial on-chain balance for
        wallet-less runs; None when nothing can be checked.
        """
        if wallet_address:
            balance = await self.ledger.get_balance(wallet_address, token)
            return balance.available

        if self.chain is not None and self.chain.is_configured():
            balances = await self.chain.get_balances()
            return balances.get(token, Decimal("0"))

        return None

    async def broadcast_balances(self, wallet_address: Optional[str]) -> None:
        try:
            if wallet_address:
                snapshots = await self.ledger.get_balances(wallet_address)
                balances = {symbol: snap.available for symbol, snap in snapshots.items()}
            elif self.chain is not None and self.chain.is_configured():
                balances = await self.chain.get_balances()
            else:
                return
        except TwapBotError as e:
            logger.warning(f"Failed to refresh balances after trade: {e.message}")
            return

        self.hub.broadcast_balance_update({"wallet_address": wallet_address, "balances": balances})

    # ===========================
    # TRADE RECORDS
    # ===========================

    async def _save_trade(self, record: TradeRecord) -> None:
        values = record.model_dump()
        values["status"] = record.status.value
        try:
            async with self.session_maker() as session:
                await crud.upsert_trade(session, values)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Trade {record.id} not persisted, keeping in memory: {e}")

    def _remember(self, record: TradeRecord) -> None:
        for index, existing in enumerate(self._history):
            if existing.id == record.id:
                self._history[index] = record
                return
        self._history.append(record)

    def get_history(self, wallet_address: Optional[str] = None, limit: int = 100) -> List[TradeRecord]:
        """In-memory history, newest first"""
        records = [r for r in self._history if wallet_address is None or r.wallet_address == wallet_address]
        return list(reversed(records))[:limit]

    def clear_history(self, wallet_address: Optional[str] = None) -> None:
        if wallet_address is None:
            self._history.clear()
            return
        kept = [r for r in self._history if r.wallet_address != wallet_address]
        self._history.clear()
        self._history.extend(kept)

    # ===========================
    # SLICE
    # ===========================

    async def _advance(self, run: ScheduleRun) -> None:
        """trades_completed += 1 in memory and in the session row"""
        run.trades_completed = min(run.trades_completed + 1, run.config.num_slices)

        if run.session_id is None:
            return
        try:
            async with self.session_maker() as session:
                await crud.increment_session_progress(session, run.session_id)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Session {run.session_id} progress not persisted: {e}")

    async def execute_slice(self, run: ScheduleRun) -> TradeRecord:
        """
        Execute the next slice of a run

        Returns:
            Final TradeRecord (success or failed)
        """
        config = run.config
        slice_number = run.trades_completed + 1
        amount = config.amount_per_slice

        record = TradeRecord(
            id=f"trade-{run.session_id or 'mem'}-{slice_number}-{uuid.uuid4().hex[:8]}",
            session_id=run.session_id,
            wallet_address=run.wallet_address,
            slice_number=slice_number,
            token_in=config.token_in,
            token_out=config.token_out,
            amount_in=amount,
            status=TradeStatus.PENDING,
            timestamp=datetime.now(UTC),
        )
        await self._save_trade(record)

        try:
            available = await self.available_balance(run.wallet_address, config.token_in)
            if available is not None and available < amount:
                raise InsufficientBalanceError(
                    f"Insufficient balance: {available} {config.token_in} < {amount}"
                )

            quote = await self.dex.get_quote(amount, config.token_in, config.token_out, config.slippage_bps)

            logger.info(
                f"Slice {slice_number}/{config.num_slices}: swapping {amount} {config.token_in} "
                f"for ~{quote.amount_out} {config.token_out}"
            )

            tx_hash = await self.dex.execute_swap(
                amount, config.token_in, config.token_out, config.slippage_bps, quote=quote
            )
            record = record.model_copy(
                update={
                    "status": TradeStatus.SUCCESS,
                    "tx_hash": tx_hash,
                    # Quoted output; the swap reverts on-chain below the slippage floor
                    "amount_out": quote.amount_out,
                }
            )
            logger.info(f"Slice {slice_number}/{config.num_slices} completed: {tx_hash}")

        except TwapBotError as e:
            record = record.model_copy(update={"status": TradeStatus.FAILED, "error": e.message})
            logger.warning(f"Slice {slice_number}/{config.num_slices} failed: {e.message}")
        except Exception as e:
            record = record.model_copy(update={"status": TradeStatus.FAILED, "error": str(e)})
            logger.exception(f"Slice {slice_number}/{config.num_slices} failed unexpectedly: {e}")

        await self._save_trade(record)
        self._remember(record)

        if record.status == TradeStatus.SUCCESS and run.wallet_address:
            try:
                await self.ledger.record_trade(
                    run.wallet_address,
                    config.token_in,
                    record.amount_in,
                    config.token_out,
                    record.amount_out,
                )
            except TwapBotError as e:
                logger.error(f"Ledger posting failed for {record.id}: {e.message}")

        self.hub.broadcast_trade_executed(record)
        await self.broadcast_balances(run.wallet_address)
        await self._advance(run)

        return record
