# coding: utf-8
"""
TWAP API

Endpoints:
    POST /api/twap/start     - start a schedule (first slice runs before reply)
    POST /api/twap/stop      - stop a schedule (idempotent)
    GET  /api/twap/status    - live snapshot
    GET  /api/twap/sessions  - persisted sessions, newest first
    POST /api/twap/quote     - one-off price quote
    GET  /api/twap/tokens    - swappable tokens
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from config.config import DEFAULT_INTERVAL_MS, DEFAULT_SLIPPAGE_BPS
from src.api.deps import CamelModel, get_services, ok
from src.core.exceptions import InvalidConfigError, WalletNotConfiguredError
from src.services.container import ServiceContainer
from src.services.twap import TwapConfig


router = APIRouter(prefix="/twap", tags=["twap"])


# ============================================================================
# REQUEST MODELS
# ============================================================================


class TwapStartRequest(CamelModel):
    total_amount: Decimal = Field(..., description="Total amount of token_in to sell")
    num_slices: int = Field(..., description="Number of equal slices")
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, description="Delay between slices")
    slippage_bps: int = Field(default=DEFAULT_SLIPPAGE_BPS, description="Max slippage per slice")
    token_in: str = "USDC"
    token_out: str = "MOVE"
    wallet_address: Optional[str] = Field(default=None, description="Ledger owner of the funds")

    def to_config(self) -> TwapConfig:
        return TwapConfig(
            total_amount=self.total_amount,
            num_slices=self.num_slices,
            slice_interval_ms=self.interval_ms,
            slippage_bps=self.slippage_bps,
            token_in=self.token_in,
            token_out=self.token_out,
        )


class TwapStopRequest(CamelModel):
    wallet_address: Optional[str] = None


class QuoteRequest(CamelModel):
    amount: Decimal
    token_in: str = "USDC"
    token_out: str = "MOVE"
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.post("/start")
async def start_twap(
    body: TwapStartRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Start a TWAP schedule"""
    if not body.wallet_address and not services.chain.is_configured() and not services.dex.is_simulation:
        raise WalletNotConfiguredError()

    status = await services.scheduler.start(body.to_config(), body.wallet_address)
    return ok(status)


@router.post("/stop")
async def stop_twap(
    body: Optional[TwapStopRequest] = None,
    services: ServiceContainer = Depends(get_services),
):
    """Stop a TWAP schedule; repeated calls return the same final snapshot"""
    wallet = body.wallet_address if body else None
    status = await services.scheduler.stop(wallet)
    return ok(status)


@router.get("/status")
async def get_twap_status(
    wallet_address: Optional[str] = Query(default=None, alias="walletAddress"),
    services: ServiceContainer = Depends(get_services),
):
    status = await services.scheduler.get_status(wallet_address)
    return ok(status)


@router.get("/sessions")
async def get_twap_sessions(
    wallet_address: Optional[str] = Query(default=None, alias="walletAddress"),
    limit: int = Query(default=50, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
):
    sessions = await services.scheduler.get_sessions(wallet_address, limit=limit)
    return ok(sessions)


@router.post("/quote")
async def get_quote(
    body: QuoteRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Price quote without executing anything"""
    if body.amount <= 0:
        raise InvalidConfigError("Amount must be greater than 0")
    quote = await services.dex.get_quote(body.amount, body.token_in, body.token_out, body.slippage_bps)
    return ok(quote)


@router.get("/tokens")
async def get_tokens(services: ServiceContainer = Depends(get_services)):
    tokens = await services.dex.get_supported_tokens()
    return ok(tokens)
