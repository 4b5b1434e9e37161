# coding: utf-8
"""
DEX Service - Mosaic aggregator quotes and swaps

Without MOSAIC_API_KEY the service runs in simulation mode: fixed
exchange rates and random transaction hashes, no chain access.
"""
import secrets
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.config import (
    MAX_SLIPPAGE_BPS,
    MIN_SLIPPAGE_BPS,
    MOSAIC_API_KEY,
    MOSAIC_API_URL,
    SUPPORTED_TOKENS,
    TokenInfo,
    find_token,
)
from src.core.exceptions import (
    ChainUnavailableError,
    InvalidConfigError,
    QuoteError,
    SwapExecutionError,
    TwapBotError,
)
from src.services.chain_service import ChainService
from src.services.schemas import SwapQuote
from src.utils.retry import rpc_retry


ZERO_ADDRESS = "0x" + "0" * 64

# Simulated exchange rates (token_in, token_out) -> amount_out per unit in
SIMULATED_RATES = {
    ("USDC", "MOVE"): Decimal("2.0"),
    ("MOVE", "USDC"): Decimal("0.5"),
}


# =============================================================================
# Mosaic response schemas
# =============================================================================


class MosaicPath(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: str
    srcAmount: Optional[int] = None
    dstAmount: Optional[int] = None


class MosaicTx(BaseModel):
    model_config = ConfigDict(extra="ignore")

    function: str
    typeArguments: List[str] = Field(default_factory=list)
    functionArguments: List[Any] = Field(default_factory=list)


class MosaicQuoteData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    srcAsset: str
    dstAsset: str
    srcAmount: int
    dstAmount: int
    paths: List[MosaicPath] = Field(default_factory=list)
    tx: Optional[MosaicTx] = None


class MosaicQuoteResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int
    message: str = ""
    requestId: Optional[str] = None
    data: Optional[MosaicQuoteData] = None


class AggregatorQuote(SwapQuote):
    """Quote plus the aggregator-built transaction"""

    tx: Optional[MosaicTx] = Field(default=None, exclude=True)


def calculate_price_impact(amount_in: Decimal) -> float:
    """Size-based price impact estimate (percent)"""
    size_multiplier = min(float(amount_in) / 10000, 1.0)
    return 0.1 + size_multiplier * 0.5


def validate_slippage(slippage_bps: int) -> bool:
    """1 bps (0.01%) .. 1000 bps (10%)"""
    return MIN_SLIPPAGE_BPS <= slippage_bps <= MAX_SLIPPAGE_BPS


def _resolve(token: str) -> TokenInfo:
    info = find_token(token)
    if info is None:
        raise InvalidConfigError(f"Unsupported token: {token}")
    return info


class DexService:
    """
    Mosaic DEX aggregator client

    - get_quote: GET {MOSAIC_API_URL}/quote (rpc_retry)
    - execute_swap: submit the quote's entry function via ChainService
    - simulation fallback when no API key is configured
    """

    REQUEST_TIMEOUT_SECONDS = 15

    def __init__(
        self,
        chain: Optional[ChainService] = None,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self.chain = chain
        self.api_url = (api_url or MOSAIC_API_URL).rstrip("/")
        self.api_key = MOSAIC_API_KEY if api_key is None else api_key

        if self.is_simulation:
            logger.warning("MOSAIC_API_KEY not configured - DEX running in simulation mode")

    @property
    def is_simulation(self) -> bool:
        return not self.api_key

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key, "Accept": "application/json"}

    # ===========================
    # QUOTES
    # ===========================

    def get_simulated_quote(self, amount_in: Decimal, token_in: str, token_out: str) -> SwapQuote:
        rate = SIMULATED_RATES.get((token_in, token_out), Decimal("1.0"))
        amount_out = amount_in * rate
        info_out = find_token(token_out)
        if info_out is not None:
            amount_out = info_out.from_raw(info_out.to_raw(amount_out))
        return SwapQuote(
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact=0.1,
            route=["simulated"],
        )

    @rpc_retry
    async def _request_quote(self, params: Dict[str, Any]) -> MosaicQuoteResponse:
        timeout = aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT_SECONDS)

        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"{self.api_url}/quote", params=params, headers=self._headers(), timeout=timeout
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Mosaic API error: {response.status} - {body[:200]}")
                    transient = response.status == 429 or response.status >= 500
                    raise ChainUnavailableError(
                        f"Mosaic API error: {response.status} {response.reason}",
                        transient=transient,
                    )
                return MosaicQuoteResponse.model_validate(await response.json())

    async def get_quote(
        self,
        amount_in: Decimal,
        token_in: str,
        token_out: str,
        slippage_bps: int,
    ) -> SwapQuote:
        """
        Quote a swap of amount_in token_in -> token_out

        Raises:
            InvalidConfigError: unsupported token / slippage
            QuoteError: aggregator unreachable or returned an error
        """
        info_in, info_out = _resolve(token_in), _resolve(token_out)
        amount_in = Decimal(str(amount_in))

        if not validate_slippage(slippage_bps):
            raise InvalidConfigError(
                f"Slippage must be between {MIN_SLIPPAGE_BPS} and {MAX_SLIPPAGE_BPS} bps"
            )

        if self.is_simulation:
            return self.get_simulated_quote(amount_in, info_in.symbol, info_out.symbol)

        sender = (self.chain.address if self.chain else None) or ZERO_ADDRESS
        params = {
            "srcAsset": info_in.coin_type,
            "dstAsset": info_out.coin_type,
            "amount": str(info_in.to_raw(amount_in)),
            "sender": sender,
            "slippage": str(slippage_bps),
        }

        try:
            response = await self._request_quote(params)
        except TwapBotError as e:
            raise QuoteError(f"Quote failed: {e.message}") from e
        except (aiohttp.ClientError, TimeoutError, ValidationError) as e:
            raise QuoteError(f"Quote failed: {e}") from e

        if response.code != 0 or response.data is None:
            logger.error(f"Mosaic API returned error code {response.code}: {response.message}")
            raise QuoteError(f"Mosaic API error: {response.message}")

        amount_out = info_out.from_raw(response.data.dstAmount)
        quote = AggregatorQuote(
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact=calculate_price_impact(amount_in),
            route=[path.source for path in response.data.paths],
            tx=response.data.tx,
        )

        logger.info(
            f"Mosaic quote: {amount_in} {info_in.symbol} -> {amount_out} {info_out.symbol} "
            f"via {quote.route} (request {response.requestId})"
        )
        return quote

    # ===========================
    # SWAPS
    # ===========================

    async def execute_swap(
        self,
        amount_in: Decimal,
        token_in: str,
        token_out: str,
        slippage_bps: int,
        quote: Optional[SwapQuote] = None,
    ) -> str:
        """
        Execute a swap and wait for on-chain confirmation

        Args:
            quote: Previously fetched quote; reused when it carries the
                aggregator transaction, otherwise a fresh quote is requested

        Returns:
            Transaction hash

        Raises:
            SwapExecutionError: submission failed or rejected on-chain
                (message contains the VM status)
        """
        info_in, info_out = _resolve(token_in), _resolve(token_out)
        amount_in = Decimal(str(amount_in))

        if self.is_simulation:
            return self._simulate_swap(amount_in, info_in.symbol, info_out.symbol)

        if self.chain is None:
            raise SwapExecutionError("No chain client configured")

        if not isinstance(quote, AggregatorQuote) or quote.tx is None:
            quote = await self.get_quote(amount_in, info_in.symbol, info_out.symbol, slippage_bps)

        if quote.tx is None:
            raise SwapExecutionError("Failed to get transaction data from Mosaic")

        logger.info(
            f"Executing Mosaic swap: {amount_in} {info_in.symbol} -> {info_out.symbol} "
            f"(expected {quote.amount_out}, slippage {slippage_bps} bps)"
        )

        try:
            tx_hash = await self.chain.submit_entry_function(
                quote.tx.function, quote.tx.typeArguments, quote.tx.functionArguments
            )
        except SwapExecutionError:
            raise
        except TwapBotError as e:
            raise SwapExecutionError(e.message) from e

        logger.info(f"Swap executed: {tx_hash} ({self.chain.explorer_url(tx_hash)})")
        return tx_hash

    def _simulate_swap(self, amount_in: Decimal, token_in: str, token_out: str) -> str:
        quote = self.get_simulated_quote(amount_in, token_in, token_out)
        tx_hash = "0x" + secrets.token_hex(32)
        logger.info(f"Simulated swap executed: {tx_hash} ({amount_in} {token_in} -> {quote.amount_out} {token_out})")
        return tx_hash

    # ===========================
    # TOKENS
    # ===========================

    @staticmethod
    def _default_tokens() -> List[Dict[str, Any]]:
        return [
            {"id": info.coin_type, "name": info.name, "symbol": info.symbol, "decimals": info.decimals}
            for info in SUPPORTED_TOKENS.values()
        ]

    async def get_supported_tokens(self) -> List[Dict[str, Any]]:
        """Aggregator token list; the local registry on simulation or failure"""
        if self.is_simulation:
            return self._default_tokens()

        try:
            timeout = aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.api_url}/tokens", headers=self._headers(), timeout=timeout
                ) as response:
                    if response.status != 200:
                        raise QuoteError(f"Failed to fetch tokens: {response.status}")
                    data = await response.json()

            return [
                {
                    "id": token.get("id"),
                    "name": token.get("name"),
                    "symbol": token.get("symbol"),
                    "decimals": token.get("decimals"),
                }
                for token in (data.get("tokenById") or {}).values()
            ]
        except Exception as e:
            logger.error(f"Failed to fetch supported tokens from Mosaic: {e}")
            return self._default_tokens()
