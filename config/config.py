"""
Configuration module for TWAP Buyback Bot

Loads configuration from environment variables using python-dotenv
"""

import os
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_EVEN
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

# Load .env file (override=False keeps explicit shell/test environment on top)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=False)


# Server
PORT: int = int(os.getenv("PORT", "3001"))
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")

# Database Configuration
DATABASE_URL: str = os.getenv(
    "DATABASE_URL", "postgresql+asyncpg://localhost:5432/twap_bot"
)

# Network ("mainnet" | "testnet")
NETWORK: str = os.getenv("NETWORK", "mainnet")

# =============================================================================
# MOVEMENT NETWORKS
# =============================================================================
MOVEMENT_NETWORKS: Dict[str, Dict] = {
    "mainnet": {
        "name": "Movement Mainnet",
        "rpc_url": "https://mainnet.movementnetwork.xyz/v1",
        "chain_id": 126,
        "explorer_url": "https://explorer.movementnetwork.xyz",
    },
    "testnet": {
        "name": "Movement Porto Testnet",
        "rpc_url": "https://aptos.testnet.porto.movementlabs.xyz/v1",
        "chain_id": 177,
        "explorer_url": "https://explorer.movementnetwork.xyz/?network=porto+testnet",
    },
}


def get_network_config() -> Dict:
    """Return settings of the selected network (mainnet fallback)"""
    return MOVEMENT_NETWORKS.get(NETWORK, MOVEMENT_NETWORKS["mainnet"])


RPC_URL: str = os.getenv("RPC_URL", "") or get_network_config()["rpc_url"]

# Mosaic DEX Aggregator (empty key = simulation mode)
MOSAIC_API_URL: str = os.getenv("MOSAIC_API_URL", "https://api.mosaic.ag/v1")
MOSAIC_API_KEY: str = os.getenv("MOSAIC_API_KEY", "")

# Token coin types (Movement Mainnet)
MOVE_TOKEN: str = os.getenv("MOVE_TOKEN", "0x1::aptos_coin::AptosCoin")
USDC_TOKEN: str = os.getenv(
    "USDC_TOKEN",
    "0x83121c9f9b0527d1f056e21a950d6bf3b9e9e2e8353d0e95ccea726713cbea39::usdc::USDC",
)

# Custodial wallet (loaded from environment only)
PRIVATE_KEY: str = os.getenv("PRIVATE_KEY", "")

# Default TWAP settings
DEFAULT_INTERVAL_MS: int = int(os.getenv("DEFAULT_INTERVAL_MS", "3600000"))  # 1 hour
DEFAULT_SLIPPAGE_BPS: int = int(os.getenv("DEFAULT_SLIPPAGE_BPS", "50"))  # 0.5%

# TWAP limits
MIN_SLICE_INTERVAL_MS: int = 1000
MIN_SLIPPAGE_BPS: int = 1
MAX_SLIPPAGE_BPS: int = 1000

# Deposit monitor
DEPOSIT_SCAN_INTERVAL_SECONDS: int = int(os.getenv("DEPOSIT_SCAN_INTERVAL_SECONDS", "10"))
DEPOSIT_SCAN_LIMIT: int = int(os.getenv("DEPOSIT_SCAN_LIMIT", "100"))

# Chain confirmation wait
TX_CONFIRMATION_TIMEOUT_SECONDS: int = int(os.getenv("TX_CONFIRMATION_TIMEOUT_SECONDS", "60"))

# Authentication (empty = auth disabled, development only)
API_KEY: str = os.getenv("API_KEY", "")
API_RATE_LIMIT: str = os.getenv("API_RATE_LIMIT", "300/minute")

# Frontend URL (CORS)
WEBAPP_URL: str = os.getenv("WEBAPP_URL", "http://localhost:3000")


# =============================================================================
# TOKENS
# =============================================================================


@dataclass(frozen=True)
class TokenInfo:
    """Supported token: ledger symbol, on-chain coin type and decimals"""

    symbol: str
    name: str
    coin_type: str
    decimals: int

    def from_raw(self, raw: int) -> Decimal:
        """Raw on-chain integer -> token amount"""
        return Decimal(int(raw)) / (Decimal(10) ** self.decimals)

    def to_raw(self, amount: Decimal) -> int:
        """Token amount -> raw on-chain integer (floored)"""
        scaled = Decimal(str(amount)) * (Decimal(10) ** self.decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))

    def round_units(self, amount: Decimal) -> Decimal:
        """Nearest whole raw unit (cleans float noise from SQLite reads)"""
        return Decimal(amount).quantize(Decimal(1).scaleb(-self.decimals), rounding=ROUND_HALF_EVEN)


SUPPORTED_TOKENS: Dict[str, TokenInfo] = {
    "MOVE": TokenInfo(symbol="MOVE", name="Movement", coin_type=MOVE_TOKEN, decimals=8),
    "USDC": TokenInfo(symbol="USDC", name="USD Coin", coin_type=USDC_TOKEN, decimals=6),
}


def find_token(token: Optional[str]) -> Optional[TokenInfo]:
    """
    Look up a supported token by symbol or coin type

    Args:
        token: "USDC", "move", or a full coin type string

    Returns:
        TokenInfo or None if unsupported
    """
    if not token:
        return None

    by_symbol = SUPPORTED_TOKENS.get(token.strip().upper())
    if by_symbol:
        return by_symbol

    for info in SUPPORTED_TOKENS.values():
        if info.coin_type.lower() == token.strip().lower():
            return info

    return None


def match_coin_type(type_string: Optional[str]) -> Optional[TokenInfo]:
    """
    Detect the supported token referenced inside a Move type string

    e.g. "0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>" -> MOVE
    """
    if not type_string:
        return None

    value = type_string.lower()
    if USDC_TOKEN.lower() in value or "usdc::usdc" in value:
        return SUPPORTED_TOKENS["USDC"]
    if MOVE_TOKEN.lower() in value or "aptoscoin" in value:
        return SUPPORTED_TOKENS["MOVE"]
    return None


def validate_config() -> bool:
    """
    Validate configuration

    Returns:
        True if configuration is usable
    """
    from loguru import logger

    is_valid = True

    if NETWORK not in MOVEMENT_NETWORKS:
        logger.error(f"Unknown NETWORK '{NETWORK}', expected one of {list(MOVEMENT_NETWORKS)}")
        is_valid = False

    if not MIN_SLIPPAGE_BPS <= DEFAULT_SLIPPAGE_BPS <= MAX_SLIPPAGE_BPS:
        logger.error(f"DEFAULT_SLIPPAGE_BPS must be in [1, 1000], got {DEFAULT_SLIPPAGE_BPS}")
        is_valid = False

    if DEFAULT_INTERVAL_MS < MIN_SLICE_INTERVAL_MS:
        logger.error(f"DEFAULT_INTERVAL_MS must be >= 1000, got {DEFAULT_INTERVAL_MS}")
        is_valid = False

    if not PRIVATE_KEY:
        logger.warning("PRIVATE_KEY not set - custodial wallet disabled")

    if not MOSAIC_API_KEY:
        logger.warning("MOSAIC_API_KEY not set - swaps run in simulation mode")

    if not API_KEY:
        logger.warning("API_KEY not set - API runs without authentication")

    return is_valid
