"""
Error taxonomy for the TWAP bot.

Every error carries an HTTP status so the API layer can map it to the
uniform {"success": false, "error": ...} envelope without a lookup table.
"""

from typing import Optional


class TwapBotError(Exception):
    """Base class for all expected bot errors."""

    error_code: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidConfigError(TwapBotError):
    """Rejected TWAP/withdraw parameters (user-correctable)."""

    error_code = "invalid_config"
    http_status = 400


class AlreadyActiveError(TwapBotError):
    """A schedule is already active for this wallet."""

    error_code = "already_active"
    http_status = 409


class InsufficientBalanceError(TwapBotError):
    """Available ledger (or custodial on-chain) balance is too low."""

    error_code = "insufficient_balance"
    http_status = 400


class QuoteError(TwapBotError):
    """DEX aggregator quote failed (network or protocol)."""

    error_code = "quote_error"
    http_status = 502


class SwapExecutionError(TwapBotError):
    """Transaction submission failed or was rejected on-chain."""

    error_code = "swap_execution_error"
    http_status = 502

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class PersistenceUnavailableError(TwapBotError):
    """Ledger store read/write failed."""

    error_code = "persistence_unavailable"
    http_status = 503


class ChainUnavailableError(TwapBotError):
    """Chain RPC failed. `transient` marks errors worth retrying."""

    error_code = "chain_unavailable"
    http_status = 503

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class WalletNotConfiguredError(TwapBotError):
    """No custodial PRIVATE_KEY configured."""

    error_code = "wallet_not_configured"
    http_status = 400

    def __init__(self, message: str = "No wallet configured. Set PRIVATE_KEY environment variable."):
        super().__init__(message)
