# coding: utf-8
"""
Wallet Service - custodial wallet info and user withdrawals

Withdrawal order:
1. validate destination / token / amount
2. ledger check (available >= amount) - before any chain call
3. custodial on-chain balance check
4. 0x1::coin::transfer
5. ledger posting (success, or failed attempt for audit)
"""
import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional

from loguru import logger

from config.config import TokenInfo, find_token
from src.core.exceptions import (
    InsufficientBalanceError,
    InvalidConfigError,
    PersistenceUnavailableError,
    TwapBotError,
    WalletNotConfiguredError,
)
from src.database.models import WithdrawalStatus
from src.services.chain_service import ChainService
from src.services.ledger_service import LedgerService, Number, to_decimal
from src.services.notification_service import NotificationHub
from src.services.schemas import BalanceSnapshot, WithdrawalResult
from src.utils.address import normalize_address


class WalletService:
    """Custodial wallet operations on behalf of ledger users"""

    def __init__(
        self,
        chain: ChainService,
        ledger: LedgerService,
        hub: Optional[NotificationHub] = None,
    ):
        self.chain = chain
        self.ledger = ledger
        self.hub = hub
        self._locks: Dict[str, asyncio.Lock] = {}

    def _require_configured(self) -> None:
        if not self.chain.is_configured():
            raise WalletNotConfiguredError()

    async def get_custodial_balances(self) -> Dict[str, Decimal]:
        self._require_configured()
        return await self.chain.get_balances()

    async def get_custodial_info(self) -> Dict[str, Any]:
        """Configured flag, address and on-chain balances (None when unconfigured)"""
        configured = self.chain.is_configured()
        address = self.chain.address if configured else None

        balances = None
        if address:
            try:
                balances = await self.chain.get_balances()
            except TwapBotError as e:
                logger.warning(f"Failed to fetch custodial balances: {e.message}")

        return {"configured": configured, "address": address, "balances": balances}

    async def get_user_balance(self, wallet_address: str) -> Dict[str, BalanceSnapshot]:
        if not wallet_address:
            raise InvalidConfigError("Wallet address is required")
        return await self.ledger.get_balances(wallet_address)

    async def withdraw(self, destination_address: str, token: str, amount: Number) -> WithdrawalResult:
        """
        Send a user's available balance back to their wallet

        Args:
            destination_address: User wallet (also the ledger key)
            token: "USDC" / "MOVE" or coin type
            amount: Token amount

        Raises:
            InvalidConfigError, WalletNotConfiguredError, InsufficientBalanceError,
            SwapExecutionError (transfer failed), PersistenceUnavailableError
        """
        if not destination_address or not isinstance(destination_address, str):
            raise InvalidConfigError("Destination address is required")

        value = to_decimal(amount)
        if value <= 0:
            raise InvalidConfigError("Amount must be a positive number")

        info = find_token(token)
        if info is None:
            raise InvalidConfigError('Invalid token. Use "USDC" or "MOVE"')

        self._require_configured()
        destination = normalize_address(destination_address)

        # Check, transfer and ledger posting are one step per wallet
        async with self._wallet_lock(destination):
            return await self._withdraw_locked(destination, info, value)

    def _wallet_lock(self, wallet: str) -> asyncio.Lock:
        lock = self._locks.get(wallet)
        if lock is None:
            lock = self._locks[wallet] = asyncio.Lock()
        return lock

    async def _withdraw_locked(self, destination: str, info: TokenInfo, value: Decimal) -> WithdrawalResult:
        balance = await self.ledger.get_balance(destination, info.symbol)
        if balance.available < value:
            raise InsufficientBalanceError(
                f"Insufficient balance. You can withdraw up to {balance.available} {info.symbol}. "
                f"(Deposited: {balance.deposited}, Withdrawn: {balance.withdrawn}, Traded: {balance.traded})"
            )

        custodial = await self.chain.get_balances()
        bot_available = custodial.get(info.symbol, Decimal("0"))
        if bot_available < value:
            raise InsufficientBalanceError(
                f"Bot wallet has insufficient {info.symbol}. Available: {bot_available}"
            )

        raw_amount = info.to_raw(value)
        if raw_amount <= 0:
            raise InvalidConfigError(f"Amount is below the smallest {info.symbol} unit")
        value = info.from_raw(raw_amount)

        logger.info(f"Processing withdrawal: {value} {info.symbol} -> {destination} (available {balance.available})")

        try:
            tx_hash = await self.chain.transfer(destination, info.coin_type, raw_amount)
        except TwapBotError as e:
            logger.error(f"Withdrawal failed for {destination}: {e.message}")
            try:
                await self.ledger.record_withdrawal(
                    destination,
                    info.symbol,
                    value,
                    getattr(e, "tx_hash", None),
                    status=WithdrawalStatus.FAILED,
                    error=e.message,
                )
            except PersistenceUnavailableError as record_error:
                logger.warning(f"Failed withdrawal not recorded: {record_error.message}")
            raise

        try:
            await self.ledger.record_withdrawal(destination, info.symbol, value, tx_hash)
        except PersistenceUnavailableError as e:
            logger.error(f"Withdrawal {tx_hash} sent but not recorded in ledger: {e.message}")
            raise PersistenceUnavailableError(
                f"Withdrawal {tx_hash} was sent but could not be recorded: {e.message}"
            ) from e

        remaining = await self.ledger.get_balance(destination, info.symbol)

        if self.hub is not None:
            balances = await self.ledger.get_balances(destination)
            self.hub.broadcast_balance_update(
                {"wallet_address": destination, "balances": {s: b.available for s, b in balances.items()}}
            )

        logger.info(f"Withdrawal completed: {tx_hash} ({value} {info.symbol} -> {destination})")
        return WithdrawalResult(
            tx_hash=tx_hash,
            amount=value,
            token=info.symbol,
            destination=destination,
            remaining_balance=remaining.available,
        )
