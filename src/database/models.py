"""
Database models for TWAP Buyback Bot

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional
from enum import Enum
from decimal import Decimal

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Numeric,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


# Token amounts: up to 18 decimals (raw chain units are converted before storage)
Amount = Numeric(36, 18)


# ===========================
# ENUMS
# ===========================


class SessionStatus(str, Enum):
    """TWAP schedule lifecycle"""

    ACTIVE = "active"  # Timer armed, slices running
    COMPLETED = "completed"  # All slices attempted
    STOPPED = "stopped"  # Stopped by user or restart
    FAILED = "failed"  # Unrecoverable error


class TradeStatus(str, Enum):
    """Slice trade status"""

    PENDING = "pending"  # Inserted before submission
    SUCCESS = "success"  # Swap confirmed on-chain
    FAILED = "failed"  # Balance / quote / swap failure


class WithdrawalStatus(str, Enum):
    """Withdrawal transfer status"""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# ===========================
# MODELS
# ===========================


class TwapSession(Base):
    """
    TWAP schedule (session)

    Invariants:
    - 0 <= trades_completed <= num_slices
    - at most one ACTIVE session per wallet_address
    - terminal statuses are never changed again
    """

    __tablename__ = "twap_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wallet_address: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True, comment="Owner wallet (custodial ledger key)"
    )

    # Config
    token_in: Mapped[str] = mapped_column(String(20), nullable=False, comment="Token sold (symbol)")
    token_out: Mapped[str] = mapped_column(String(20), nullable=False, comment="Token bought (symbol)")
    total_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, comment="Total amount of token_in")
    num_slices: Mapped[int] = mapped_column(Integer, nullable=False, comment="Number of slices")
    slice_interval_ms: Mapped[int] = mapped_column(Integer, nullable=False, comment="Delay between slices")
    slippage_bps: Mapped[int] = mapped_column(Integer, nullable=False, comment="Slippage tolerance (bps)")

    # Progress
    trades_completed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Slices attempted (success or failed)"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=SessionStatus.ACTIVE.value,
        index=True,
        nullable=False,
        comment="active, completed, stopped, failed",
    )

    # Timestamps
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    stopped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_slice_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    trades = relationship("Trade", back_populates="session")

    def __repr__(self) -> str:
        return (
            f"<TwapSession(id={self.id}, wallet={self.wallet_address}, "
            f"{self.trades_completed}/{self.num_slices}, status={self.status})>"
        )


class Trade(Base):
    """
    One TWAP slice

    Inserted as PENDING before submission and upserted in place to
    SUCCESS/FAILED (keyed by id, never duplicated).
    """

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)

    session_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("twap_sessions.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    wallet_address: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)
    slice_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    token_in: Mapped[str] = mapped_column(String(20), nullable=False)
    token_out: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_in: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    amount_out: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"), nullable=False)

    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=TradeStatus.PENDING.value, nullable=False, comment="pending, success, failed"
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        index=True,
        nullable=False,
    )

    session = relationship("TwapSession", back_populates="trades")

    def __repr__(self) -> str:
        return f"<Trade(id={self.id}, amount_in={self.amount_in}, status={self.status})>"


class WalletBalance(Base):
    """
    Custodial balance per (wallet, token)

    available = max(0, deposited - withdrawn - traded). Columns only ever
    grow through relative increments.
    """

    __tablename__ = "wallet_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wallet_address: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    token: Mapped[str] = mapped_column(String(20), nullable=False)

    deposited: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"), nullable=False)
    withdrawn: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"), nullable=False)
    traded: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (UniqueConstraint("wallet_address", "token", name="uq_wallet_token"),)

    @property
    def available(self) -> Decimal:
        return max(Decimal("0"), self.deposited - self.withdrawn - self.traded)

    def __repr__(self) -> str:
        return f"<WalletBalance(wallet={self.wallet_address}, token={self.token}, available={self.available})>"


class DepositTransaction(Base):
    """
    Credited deposit (immutable)

    tx_hash is unique: a chain transaction credits `deposited` at most once.
    Manual credits without a hash are allowed (NULLs don't collide).
    """

    __tablename__ = "deposit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    wallet_address: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    token: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    confirmed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DepositTransaction(tx={self.tx_hash}, {self.amount} {self.token})>"


class WithdrawalTransaction(Base):
    """
    Withdrawal attempt (audit trail, failed attempts included)
    """

    __tablename__ = "withdrawal_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wallet_address: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    token: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=WithdrawalStatus.PENDING.value, nullable=False
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WithdrawalTransaction(wallet={self.wallet_address}, {self.amount} {self.token}, {self.status})>"


Index("ix_twap_sessions_wallet_status", TwapSession.wallet_address, TwapSession.status)
