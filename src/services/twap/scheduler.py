# coding: utf-8
"""
TWAP Scheduler - owns schedule lifecycle

    none -> active -> completed | stopped | failed

One active schedule per wallet. Each run is an asyncio task that sleeps
until next_slice_at, executes one slice to completion, then recomputes
next_slice_at = now + interval. Stopping cancels the pending sleep; a
slice already in flight is awaited so its accounting is never lost.
"""
import asyncio
from datetime import datetime, timedelta, UTC
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from config.config import MAX_SLIPPAGE_BPS, MIN_SLICE_INTERVAL_MS, MIN_SLIPPAGE_BPS, find_token
from src.core.exceptions import (
    AlreadyActiveError,
    InsufficientBalanceError,
    InvalidConfigError,
    PersistenceUnavailableError,
)
from src.database import crud
from src.database.models import SessionStatus
from src.services.notification_service import NotificationHub
from src.services.twap.executor import TradeExecutor
from src.services.twap.schemas import (
    ScheduleRun,
    ScheduleStatus,
    SessionRecord,
    TradeRecord,
    TwapConfig,
)
from src.utils.address import normalize_address


SleepFunc = Callable[[float], Awaitable[None]]


class TwapScheduler:
    """
    Schedule state machine

    Args:
        executor: Executes single slices
        hub: Status fan-out (defaults to the executor's hub)
        sleep: Awaitable delay, injectable for tests
    """

    def __init__(
        self,
        executor: TradeExecutor,
        hub: Optional[NotificationHub] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.executor = executor
        self.hub = hub or executor.hub
        self._sleep = sleep
        self._runs: Dict[Optional[str], ScheduleRun] = {}
        self._last_status: Dict[Optional[str], ScheduleStatus] = {}
        self._current_wallet: Optional[str] = None
        self._start_lock = asyncio.Lock()

    @property
    def session_maker(self):
        return self.executor.session_maker

    # ===========================
    # VALIDATION
    # ===========================

    @staticmethod
    def validate_config(config: TwapConfig) -> TwapConfig:
        """
        Check limits and normalize tokens to ledger symbols

        Raises:
            InvalidConfigError
        """
        if config.total_amount <= 0:
            raise InvalidConfigError("Total amount must be greater than 0")
        if config.num_slices <= 0:
            raise InvalidConfigError("Number of slices must be greater than 0")
        if config.slice_interval_ms < MIN_SLICE_INTERVAL_MS:
            raise InvalidConfigError("Interval must be at least 1 second")
        if not MIN_SLIPPAGE_BPS <= config.slippage_bps <= MAX_SLIPPAGE_BPS:
            raise InvalidConfigError("Slippage must be between 0.01% (1 bps) and 10% (1000 bps)")

        token_in, token_out = find_token(config.token_in), find_token(config.token_out)
        if token_in is None:
            raise InvalidConfigError(f"Unsupported token: {config.token_in}")
        if token_out is None:
            raise InvalidConfigError(f"Unsupported token: {config.token_out}")
        if token_in.symbol == token_out.symbol:
            raise InvalidConfigError("Input and output tokens must differ")

        config = config.model_copy(update={"token_in": token_in.symbol, "token_out": token_out.symbol})
        if config.amount_per_slice <= 0:
            raise InvalidConfigError(f"Amount per slice is below the smallest {token_in.symbol} unit")
        return config

    # ===========================
    # LIFECYCLE
    # ===========================

    async def start(self, config: TwapConfig, wallet_address: Optional[str] = None) -> ScheduleStatus:
        """
        Start a schedule and execute its first slice before returning

        Raises:
            InvalidConfigError: bad parameters
            AlreadyActiveError: wallet already has an active schedule
            InsufficientBalanceError: available < total_amount
            PersistenceUnavailableError: precondition reads failed
        """
        wallet = normalize_address(wallet_address) if wallet_address else None
        config = self.validate_config(config)

        async with self._start_lock:
            if wallet in self._runs:
                raise AlreadyActiveError("TWAP already running for this wallet. Stop it first.")

            if wallet:
                try:
                    async with self.session_maker() as session:
                        existing = await crud.get_active_session(session, wallet)
                except SQLAlchemyError as e:
                    raise PersistenceUnavailableError(f"Failed to read sessions: {e}") from e
                if existing is not None:
                    raise AlreadyActiveError(
                        f"TWAP session {existing.id} already active for this wallet. Stop it first."
                    )

            available = await self.executor.available_balance(wallet, config.token_in)
            if available is not None and available < config.total_amount:
                raise InsufficientBalanceError(
                    f"Insufficient balance: {available} {config.token_in} available, "
                    f"{config.total_amount} required"
                )

            run = ScheduleRun(config=config, wallet_address=wallet, started_at=datetime.now(UTC))
            run.session_id = await self._persist_new_session(run)

            self._runs[wallet] = run
            self._last_status.pop(wallet, None)
            self._current_wallet = wallet

        logger.info(
            f"Starting TWAP for {wallet or 'custodial wallet'}: {config.num_slices} slices of "
            f"{config.amount_per_slice} {config.token_in} every {config.slice_interval_ms}ms"
        )

        await self._execute(run)

        if run.is_complete:
            return await self._finish(run, SessionStatus.COMPLETED)
        if run.stop_requested or not run.is_active:
            # stop() arrived during the first slice and owns finalization
            return self._last_status.get(wallet) or run.snapshot()

        await self._schedule_next(run)
        run.task = asyncio.create_task(self._run_loop(run), name=f"twap-{run.session_id or 'mem'}")

        status = run.snapshot()
        self.hub.broadcast_twap_status(status)
        return status

    async def stop(self, wallet_address: Optional[str] = None) -> ScheduleStatus:
        """
        Stop a schedule (idempotent)

        Args:
            wallet_address: Wallet to stop; most recently started run if None

        Returns:
            Final snapshot; the same terminal snapshot on repeated calls
        """
        wallet = normalize_address(wallet_address) if wallet_address else self._current_wallet
        run = self._runs.get(wallet)

        if run is None:
            status = self._last_status.get(wallet)
            if status is None and wallet:
                status = await self._stop_persisted(wallet)
            if status is None:
                status = ScheduleStatus.inactive(wallet)
            self.hub.broadcast_twap_status(status)
            return status

        run.stop_requested = True

        if run.pending_sleep is not None and not run.pending_sleep.done():
            run.pending_sleep.cancel()

        in_flight = run.in_flight
        if in_flight is not None and not in_flight.done():
            logger.info("Stop requested while a slice is in flight, waiting for it to finish")
            try:
                await asyncio.shield(in_flight)
            except Exception as e:
                logger.warning(f"In-flight slice ended with error during stop: {e}")

        # The loop exits on its own once stop_requested is seen
        task = run.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

        final = SessionStatus.COMPLETED if run.is_complete else SessionStatus.STOPPED
        status = await self._finish(run, final)
        logger.info(f"TWAP stopped after {run.trades_completed}/{run.config.num_slices} slices")
        return status

    async def shutdown(self) -> None:
        """Stop every active run"""
        for wallet in list(self._runs):
            await self.stop(wallet)

    async def join(self, wallet_address: Optional[str] = None) -> None:
        """Wait until the wallet's run loop exits"""
        wallet = normalize_address(wallet_address) if wallet_address else self._current_wallet
        run = self._runs.get(wallet)
        if run is not None and run.task is not None:
            try:
                await run.task
            except asyncio.CancelledError:
                pass

    async def restore_on_startup(self) -> int:
        """
        Mark sessions left ACTIVE by a previous process as STOPPED

        Returns:
            Number of sessions stopped
        """
        try:
            async with self.session_maker() as session:
                stale = await crud.get_active_sessions(session)
                for row in stale:
                    await crud.finalize_twap_session(session, row.id, SessionStatus.STOPPED)
        except SQLAlchemyError as e:
            logger.warning(f"Could not restore TWAP sessions: {e}")
            return 0

        if stale:
            logger.info(f"Marked {len(stale)} stale TWAP session(s) as stopped")
        return len(stale)

    # ===========================
    # RUN LOOP
    # ===========================

    async def _execute(self, run: ScheduleRun) -> TradeRecord:
        run.in_flight = asyncio.ensure_future(self.executor.execute_slice(run))
        try:
            return await asyncio.shield(run.in_flight)
        finally:
            if run.in_flight is not None and run.in_flight.done():
                run.in_flight = None

    async def _schedule_next(self, run: ScheduleRun) -> None:
        run.next_slice_at = datetime.now(UTC) + timedelta(milliseconds=run.config.slice_interval_ms)
        if run.session_id is None:
            return
        try:
            async with self.session_maker() as session:
                await crud.set_session_next_slice(session, run.session_id, run.next_slice_at)
        except SQLAlchemyError as e:
            logger.warning(f"Session {run.session_id} next slice time not persisted: {e}")

    async def _run_loop(self, run: ScheduleRun) -> None:
        try:
            while run.is_active and not run.stop_requested:
                delay = (run.next_slice_at - datetime.now(UTC)).total_seconds()
                run.pending_sleep = asyncio.ensure_future(self._sleep(max(0.0, delay)))
                try:
                    await run.pending_sleep
                except asyncio.CancelledError:
                    if run.stop_requested:
                        return
                    raise
                finally:
                    run.pending_sleep = None

                if run.stop_requested or not run.is_active:
                    return

                await self._execute(run)

                if run.is_complete:
                    logger.info("TWAP completed")
                    await self._finish(run, SessionStatus.COMPLETED)
                    return

                await self._schedule_next(run)
                self.hub.broadcast_twap_status(run.snapshot())

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"TWAP run loop crashed: {e}")
            self.hub.broadcast_error(f"TWAP schedule failed: {e}")
            await self._finish(run, SessionStatus.FAILED)

    async def _finish(self, run: ScheduleRun, status: SessionStatus) -> ScheduleStatus:
        """Move a run to a terminal status exactly once"""
        if not run.is_active:
            return self._last_status.get(run.wallet_address, run.snapshot())

        run.status = status
        run.stopped_at = datetime.now(UTC)
        run.next_slice_at = None

        if run.session_id is not None:
            try:
                async with self.session_maker() as session:
                    await crud.finalize_twap_session(session, run.session_id, status, run.stopped_at)
            except SQLAlchemyError as e:
                logger.warning(f"Session {run.session_id} final status not persisted: {e}")

        if self._runs.get(run.wallet_address) is run:
            del self._runs[run.wallet_address]

        snapshot = run.snapshot()
        self._last_status[run.wallet_address] = snapshot
        self.hub.broadcast_twap_status(snapshot)
        logger.info(f"TWAP session {run.session_id} -> {status.value}")
        return snapshot

    async def _persist_new_session(self, run: ScheduleRun) -> Optional[int]:
        config = run.config
        try:
            async with self.session_maker() as session:
                row = await crud.create_twap_session(
                    session,
                    wallet_address=run.wallet_address,
                    token_in=config.token_in,
                    token_out=config.token_out,
                    total_amount=config.total_amount,
                    num_slices=config.num_slices,
                    slice_interval_ms=config.slice_interval_ms,
                    slippage_bps=config.slippage_bps,
                    started_at=run.started_at,
                )
            return row.id
        except SQLAlchemyError as e:
            logger.warning(f"TWAP session not persisted, running in memory only: {e}")
            return None

    async def _stop_persisted(self, wallet: str) -> Optional[ScheduleStatus]:
        """Stop an ACTIVE session row that has no live run in this process"""
        try:
            async with self.session_maker() as session:
                row = await crud.get_active_session(session, wallet)
                if row is None:
                    return None
                await crud.finalize_twap_session(session, row.id, SessionStatus.STOPPED)
                row = await crud.get_twap_session(session, row.id)
                await session.refresh(row)
        except SQLAlchemyError as e:
            logger.warning(f"Could not stop persisted session for {wallet}: {e}")
            return None

        status = ScheduleStatus.from_session(row)
        self._last_status[wallet] = status
        return status

    # ===========================
    # QUERIES
    # ===========================

    async def get_status(self, wallet_address: Optional[str] = None) -> ScheduleStatus:
        """
        Live snapshot

        Without a wallet: the most recently started run in this process.
        With a wallet: its live run, else its persisted ACTIVE session,
        else an inactive snapshot.
        """
        if not wallet_address:
            run = self._runs.get(self._current_wallet)
            if run is not None:
                return run.snapshot()
            return self._last_status.get(self._current_wallet) or ScheduleStatus.inactive()

        wallet = normalize_address(wallet_address)
        run = self._runs.get(wallet)
        if run is not None:
            return run.snapshot()

        try:
            async with self.session_maker() as session:
                row = await crud.get_active_session(session, wallet)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read active session for {wallet}: {e}")
            row = None

        if row is not None:
            return ScheduleStatus.from_session(row)
        return ScheduleStatus.inactive(wallet)

    async def get_sessions(self, wallet_address: Optional[str] = None, limit: int = 50) -> List[SessionRecord]:
        wallet = normalize_address(wallet_address) if wallet_address else None
        try:
            async with self.session_maker() as session:
                rows = await crud.get_all_sessions(session, limit=limit, wallet_address=wallet)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to read sessions: {e}") from e
        return [SessionRecord.model_validate(row) for row in rows]

    async def get_trade_history(self, wallet_address: Optional[str] = None, limit: int = 100) -> List[TradeRecord]:
        """Persisted trades newest first; in-memory history if the store is down"""
        wallet = normalize_address(wallet_address) if wallet_address else None
        try:
            async with self.session_maker() as session:
                rows = await crud.get_trade_history(session, limit=limit, wallet_address=wallet)
        except SQLAlchemyError as e:
            logger.warning(f"Trade history unavailable from store, using memory: {e}")
            return self.executor.get_history(wallet, limit)
        return [TradeRecord.model_validate(row) for row in rows]

    async def clear_trade_history(self, wallet_address: Optional[str] = None) -> int:
        wallet = normalize_address(wallet_address) if wallet_address else None
        self.executor.clear_history(wallet)
        try:
            async with self.session_maker() as session:
                return await crud.clear_trade_history(session, wallet)
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(f"Failed to clear trade history: {e}") from e

    def get_amount_per_slice(self, wallet_address: Optional[str] = None) -> Decimal:
        wallet = normalize_address(wallet_address) if wallet_address else self._current_wallet
        run = self._runs.get(wallet)
        if run is None:
            return Decimal("0")
        return run.config.amount_per_slice

    def active_wallets(self) -> List[Optional[str]]:
        return list(self._runs)
