"""
Unit tests for configuration and token registry
"""

from decimal import Decimal

from config.config import (
    DEFAULT_SLIPPAGE_BPS,
    MIN_SLICE_INTERVAL_MS,
    SUPPORTED_TOKENS,
    USDC_TOKEN,
    find_token,
    get_network_config,
    match_coin_type,
    validate_config,
)


def test_config_defaults():
    """Test default TWAP settings"""
    assert DEFAULT_SLIPPAGE_BPS == 50
    assert MIN_SLICE_INTERVAL_MS == 1000
    assert get_network_config()["chain_id"] in (126, 177)
    assert validate_config() is True


def test_find_token_by_symbol_and_coin_type():
    assert find_token("USDC").symbol == "USDC"
    assert find_token("move").symbol == "MOVE"
    assert find_token("0x1::aptos_coin::AptosCoin").symbol == "MOVE"
    assert find_token(USDC_TOKEN.upper()).symbol == "USDC"
    assert find_token("DOGE") is None
    assert find_token("") is None


def test_raw_amount_conversion():
    move = SUPPORTED_TOKENS["MOVE"]
    usdc = SUPPORTED_TOKENS["USDC"]

    assert move.from_raw(150_000_000) == Decimal("1.5")
    assert usdc.from_raw(50_000_000) == Decimal("50")

    assert usdc.to_raw(Decimal("1.25")) == 1_250_000
    # Outbound amounts floor to the raw unit
    assert usdc.to_raw(Decimal("0.0000019")) == 1
    assert move.to_raw(Decimal("0.000000009")) == 0

    # Stored balances come back at whole raw units
    assert usdc.round_units(Decimal("16.666665999999999201")) == Decimal("16.666666")
    assert usdc.round_units(Decimal("83.333330000000003")) == Decimal("83.33333")


def test_match_coin_type():
    assert match_coin_type("0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>").symbol == "MOVE"
    assert match_coin_type(f"0x1::coin::CoinStore<{USDC_TOKEN}>").symbol == "USDC"
    assert match_coin_type("0x1::coin::CoinStore<0xdead::meme::MEME>") is None
    assert match_coin_type(None) is None
