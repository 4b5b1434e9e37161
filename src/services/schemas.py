"""
Shared Pydantic models for ledger, wallet and DEX data.

Amounts are Decimal internally and serialize to JSON numbers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, computed_field


# Decimal that dumps as a float in JSON mode
JsonDecimal = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]

ZERO = Decimal("0")


# =============================================================================
# Ledger
# =============================================================================


class BalanceSnapshot(BaseModel):
    """Balance of one (wallet, token) pair."""

    token: str
    deposited: JsonDecimal = ZERO
    withdrawn: JsonDecimal = ZERO
    traded: JsonDecimal = ZERO

    @computed_field(return_type=JsonDecimal)
    @property
    def available(self) -> Decimal:
        return max(ZERO, self.deposited - self.withdrawn - self.traded)


class DepositRecord(BaseModel):
    """Credited deposit as returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    tx_hash: Optional[str] = None
    wallet_address: str
    token: str
    amount: JsonDecimal
    confirmed: bool = True
    created_at: Optional[datetime] = None


class WithdrawalResult(BaseModel):
    """Outcome of a successful withdrawal."""

    tx_hash: str
    amount: JsonDecimal
    token: str
    destination: str
    remaining_balance: JsonDecimal


# =============================================================================
# DEX
# =============================================================================


class SwapQuote(BaseModel):
    """Aggregator quote for one swap."""

    amount_in: JsonDecimal
    amount_out: JsonDecimal
    price_impact: float
    route: List[str] = Field(default_factory=list)
