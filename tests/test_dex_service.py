"""
Unit tests for DexService (simulation mode and Mosaic response handling)
"""

from decimal import Decimal

import pytest

from src.core.exceptions import InvalidConfigError, QuoteError
from src.services.dex_service import (
    DexService,
    MosaicQuoteResponse,
    calculate_price_impact,
    validate_slippage,
)


@pytest.fixture
def simulated() -> DexService:
    return DexService(api_key="")


@pytest.mark.asyncio
async def test_simulated_quote_rates(simulated):
    quote = await simulated.get_quote(Decimal("100"), "USDC", "MOVE", 50)
    assert quote.amount_out == Decimal("200")
    assert quote.price_impact == 0.1
    assert quote.route == ["simulated"]

    reverse = await simulated.get_quote(Decimal("100"), "MOVE", "USDC", 50)
    assert reverse.amount_out == Decimal("50")

    # MOVE has 8 decimals, USDC 6: output floors to whole USDC units
    odd = await simulated.get_quote(Decimal("1.23456789"), "MOVE", "USDC", 50)
    assert odd.amount_out == Decimal("0.617283")


@pytest.mark.asyncio
async def test_simulated_swap_returns_random_hash(simulated):
    first = await simulated.execute_swap(Decimal("1"), "USDC", "MOVE", 50)
    second = await simulated.execute_swap(Decimal("1"), "USDC", "MOVE", 50)

    assert first.startswith("0x") and len(first) == 66
    assert first != second


@pytest.mark.asyncio
async def test_quote_validation(simulated):
    with pytest.raises(InvalidConfigError):
        await simulated.get_quote(Decimal("1"), "USDC", "MOVE", 0)
    with pytest.raises(InvalidConfigError):
        await simulated.get_quote(Decimal("1"), "USDC", "DOGE", 50)


def test_validate_slippage_bounds():
    assert validate_slippage(1)
    assert validate_slippage(1000)
    assert not validate_slippage(0)
    assert not validate_slippage(1001)


def test_price_impact_estimate():
    assert calculate_price_impact(Decimal("0")) == pytest.approx(0.1)
    assert calculate_price_impact(Decimal("5000")) == pytest.approx(0.35)
    assert calculate_price_impact(Decimal("50000")) == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_aggregator_quote_parsed(monkeypatch):
    dex = DexService(api_key="test-key")

    async def fake_request(params):
        assert params["amount"] == "10000000"
        return MosaicQuoteResponse.model_validate(
            {
                "code": 0,
                "message": "ok",
                "requestId": "req-1",
                "data": {
                    "srcAsset": params["srcAsset"],
                    "dstAsset": params["dstAsset"],
                    "srcAmount": 10_000_000,
                    "dstAmount": 2_050_000_000,
                    "paths": [{"source": "razor"}, {"source": "yuzu"}],
                    "tx": {
                        "function": "0xmosaic::router::swap",
                        "typeArguments": [],
                        "functionArguments": ["1"],
                    },
                },
            }
        )

    monkeypatch.setattr(dex, "_request_quote", fake_request)

    quote = await dex.get_quote(Decimal("10"), "USDC", "MOVE", 50)

    assert quote.amount_out == Decimal("20.5")
    assert quote.route == ["razor", "yuzu"]
    assert "tx" not in quote.model_dump()


@pytest.mark.asyncio
async def test_aggregator_error_code_raises_quote_error(monkeypatch):
    dex = DexService(api_key="test-key")

    async def fake_request(params):
        return MosaicQuoteResponse.model_validate({"code": 400, "message": "insufficient liquidity"})

    monkeypatch.setattr(dex, "_request_quote", fake_request)

    with pytest.raises(QuoteError) as exc_info:
        await dex.get_quote(Decimal("10"), "USDC", "MOVE", 50)

    assert "insufficient liquidity" in exc_info.value.message
