"""
Core module - базовые исключения для всего стека.
"""

from src.core.exceptions import (
    TwapBotError,
    InvalidConfigError,
    AlreadyActiveError,
    InsufficientBalanceError,
    QuoteError,
    SwapExecutionError,
    PersistenceUnavailableError,
    ChainUnavailableError,
    WalletNotConfiguredError,
)

__all__ = [
    "TwapBotError",
    "InvalidConfigError",
    "AlreadyActiveError",
    "InsufficientBalanceError",
    "QuoteError",
    "SwapExecutionError",
    "PersistenceUnavailableError",
    "ChainUnavailableError",
    "WalletNotConfiguredError",
]
