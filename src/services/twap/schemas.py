"""
TWAP Schemas - configs, status snapshots and trade records.

ScheduleRun is the in-process state of one active schedule; everything
else here is a Pydantic model returned to API clients and subscribers.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from config.config import DEFAULT_INTERVAL_MS, DEFAULT_SLIPPAGE_BPS, find_token
from src.database.models import SessionStatus, TradeStatus
from src.services.schemas import JsonDecimal, ZERO


class TwapConfig(BaseModel):
    """Schedule parameters (validated by TwapScheduler.start)."""

    total_amount: JsonDecimal
    num_slices: int
    slice_interval_ms: int = DEFAULT_INTERVAL_MS
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    token_in: str = "USDC"
    token_out: str = "MOVE"

    @property
    def amount_per_slice(self) -> Decimal:
        """
        total_amount / num_slices floored to token_in decimals

        The same value is quoted, swapped on-chain and posted to the ledger,
        so the slices never add up to more than the funded total.
        """
        if self.num_slices <= 0:
            return ZERO
        share = self.total_amount / self.num_slices
        info = find_token(self.token_in)
        if info is None:
            return share
        return info.from_raw(info.to_raw(share))


class ScheduleStatus(BaseModel):
    """Snapshot of a schedule (or an explicit inactive one)."""

    is_active: bool = False
    session_id: Optional[int] = None
    wallet_address: Optional[str] = None
    config: Optional[TwapConfig] = None
    status: Optional[SessionStatus] = None
    trades_completed: int = 0
    total_trades: int = 0
    amount_per_slice: JsonDecimal = ZERO
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    next_slice_at: Optional[datetime] = None

    @classmethod
    def inactive(cls, wallet_address: Optional[str] = None) -> "ScheduleStatus":
        return cls(wallet_address=wallet_address)

    @classmethod
    def from_session(cls, row) -> "ScheduleStatus":
        """Snapshot of a persisted TwapSession row"""
        total_amount = row.total_amount
        info = find_token(row.token_in)
        if info is not None:
            total_amount = info.round_units(total_amount)
        config = TwapConfig(
            total_amount=total_amount,
            num_slices=row.num_slices,
            slice_interval_ms=row.slice_interval_ms,
            slippage_bps=row.slippage_bps,
            token_in=row.token_in,
            token_out=row.token_out,
        )
        status = SessionStatus(row.status)
        return cls(
            is_active=status == SessionStatus.ACTIVE,
            session_id=row.id,
            wallet_address=row.wallet_address,
            config=config,
            status=status,
            trades_completed=row.trades_completed,
            total_trades=row.num_slices,
            amount_per_slice=config.amount_per_slice,
            started_at=row.started_at,
            stopped_at=row.stopped_at,
            next_slice_at=row.next_slice_at,
        )


class TradeRecord(BaseModel):
    """One slice outcome."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: Optional[int] = None
    wallet_address: Optional[str] = None
    slice_number: int = 1
    token_in: str
    token_out: str
    amount_in: JsonDecimal
    amount_out: JsonDecimal = ZERO
    tx_hash: Optional[str] = None
    status: TradeStatus = TradeStatus.PENDING
    error: Optional[str] = None
    timestamp: datetime

    @model_validator(mode="after")
    def round_to_token_units(self) -> "TradeRecord":
        info_in, info_out = find_token(self.token_in), find_token(self.token_out)
        if info_in is not None:
            self.amount_in = info_in.round_units(self.amount_in)
        if info_out is not None:
            self.amount_out = info_out.round_units(self.amount_out)
        return self


class SessionRecord(BaseModel):
    """Persisted session as listed by /twap/sessions."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: Optional[str] = None
    token_in: str
    token_out: str
    total_amount: JsonDecimal
    num_slices: int
    slice_interval_ms: int
    slippage_bps: int
    trades_completed: int
    status: SessionStatus
    started_at: datetime
    stopped_at: Optional[datetime] = None
    next_slice_at: Optional[datetime] = None


@dataclass
class ScheduleRun:
    """
    Live state of one active schedule

    Only the timer task and the in-flight slice are process-local; the
    rest mirrors the persisted session row.
    """

    config: TwapConfig
    wallet_address: Optional[str]
    started_at: datetime
    session_id: Optional[int] = None
    trades_completed: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    next_slice_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    stop_requested: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    in_flight: Optional[asyncio.Future] = field(default=None, repr=False)
    pending_sleep: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def is_complete(self) -> bool:
        return self.trades_completed >= self.config.num_slices

    def snapshot(self) -> ScheduleStatus:
        return ScheduleStatus(
            is_active=self.is_active,
            session_id=self.session_id,
            wallet_address=self.wallet_address,
            config=self.config,
            status=self.status,
            trades_completed=self.trades_completed,
            total_trades=self.config.num_slices,
            amount_per_slice=self.config.amount_per_slice,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            next_slice_at=self.next_slice_at,
        )
