# coding: utf-8
"""
Deposit Monitor Service

Detects incoming coin transfers to the custodial wallet and credits the
ledger exactly once per chain transaction:
- in-memory processed set, hydrated from stored deposit hashes on first scan
- second dedup check against the store before crediting
- unique tx_hash constraint as the last line (ON CONFLICT DO NOTHING)

Deposits are recognized from coin deposit events first, then from the
entry function payload (coin::transfer / aptos_account::transfer*).
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Set

from loguru import logger
from pydantic import BaseModel

from config.config import (
    DEPOSIT_SCAN_INTERVAL_SECONDS,
    DEPOSIT_SCAN_LIMIT,
    SUPPORTED_TOKENS,
    match_coin_type,
)
from src.core.exceptions import PersistenceUnavailableError, TwapBotError
from src.services.chain_schemas import ChainTransaction
from src.services.chain_service import ChainService
from src.services.ledger_service import LedgerService
from src.services.notification_service import NotificationHub
from src.services.schemas import DepositRecord, JsonDecimal
from src.tasks.deposit_scanner import DepositScanner
from src.utils.address import addresses_equal, normalize_address, short_address


TRANSFER_FUNCTIONS = {
    "0x1::coin::transfer",
    "0x1::aptos_account::transfer_coins",
    "0x1::aptos_account::transfer",
}


@dataclass
class DetectedDeposit:
    sender: str
    token: str
    amount: Decimal


class DepositVerification(BaseModel):
    """Result of a manual deposit verification"""

    success: bool
    amount: Optional[JsonDecimal] = None
    token: Optional[str] = None
    error: Optional[str] = None


def extract_deposit(tx: ChainTransaction, custodial_address: str) -> Optional[DetectedDeposit]:
    """
    Find a transfer to the custodial address inside a committed transaction

    Returns:
        DetectedDeposit or None when the transaction is not a deposit
    """
    if not tx.sender:
        return None

    for event in tx.events:
        if not event.is_deposit or not addresses_equal(event.account, custodial_address):
            continue
        raw_amount = event.amount
        token = match_coin_type(event.type) or match_coin_type(event.data.get("coin_type"))
        if token is not None and raw_amount and raw_amount > 0:
            return DetectedDeposit(sender=tx.sender, token=token.symbol, amount=token.from_raw(raw_amount))

    payload = tx.payload
    if payload is None or payload.function not in TRANSFER_FUNCTIONS or len(payload.arguments) < 2:
        return None

    if not addresses_equal(str(payload.arguments[0]), custodial_address):
        return None

    try:
        raw_amount = int(payload.arguments[1])
    except (TypeError, ValueError):
        return None

    if payload.function == "0x1::aptos_account::transfer":
        token = SUPPORTED_TOKENS["MOVE"]
    else:
        token = match_coin_type(payload.type_arguments[0] if payload.type_arguments else None)

    if token is None or raw_amount <= 0:
        return None
    return DetectedDeposit(sender=tx.sender, token=token.symbol, amount=token.from_raw(raw_amount))


class DepositMonitor:
    """
    Polls the custodial wallet's recent transactions for deposits

    scan() is driven by DepositScanner (APScheduler) and can also be
    triggered on demand.
    """

    def __init__(
        self,
        chain: ChainService,
        ledger: LedgerService,
        hub: Optional[NotificationHub] = None,
        scan_limit: int = DEPOSIT_SCAN_LIMIT,
        interval_seconds: int = DEPOSIT_SCAN_INTERVAL_SECONDS,
    ):
        self.chain = chain
        self.ledger = ledger
        self.hub = hub
        self.scan_limit = scan_limit
        self._processed: Set[str] = set()
        self._hydrated = False
        self._scan_lock = asyncio.Lock()
        self._scanner = DepositScanner(self.scan, interval_seconds=interval_seconds)

    @property
    def running(self) -> bool:
        return self._scanner.running

    def is_processed(self, tx_hash: str) -> bool:
        return tx_hash in self._processed

    async def _hydrate(self) -> None:
        if self._hydrated:
            return
        try:
            hashes = await self.ledger.get_processed_deposit_hashes()
        except PersistenceUnavailableError as e:
            logger.warning(f"Failed to load processed deposit hashes: {e.message}")
            return

        self._processed.update(hashes)
        self._hydrated = True
        logger.debug(f"Loaded {len(hashes)} processed deposit hashes")

    def _notify(self, wallet: str) -> None:
        if self.hub is not None:
            self.hub.broadcast_balance_update({"wallet_address": wallet, "deposit": True})

    async def _process(self, tx: ChainTransaction, custodial: str) -> bool:
        """Credit one transaction if it is a new deposit"""
        if not tx.success:
            return False
        if addresses_equal(tx.sender, custodial):
            return False

        deposit = extract_deposit(tx, custodial)
        if deposit is None:
            return False

        if await self.ledger.is_deposit_recorded(tx.hash):
            return False

        credited = await self.ledger.record_deposit(deposit.sender, deposit.token, deposit.amount, tx.hash)
        if credited:
            logger.info(
                f"Auto-detected deposit: {deposit.amount} {deposit.token} from "
                f"{short_address(deposit.sender)} (tx={tx.hash})"
            )
            self._notify(normalize_address(deposit.sender))
        return credited

    async def scan(self) -> int:
        """
        Inspect recent custodial transactions once

        Returns:
            Number of newly credited deposits
        """
        custodial = self.chain.address
        if not custodial:
            return 0

        async with self._scan_lock:
            await self._hydrate()

            try:
                transactions = await self.chain.get_account_transactions(custodial, limit=self.scan_limit)
            except Exception as e:
                logger.warning(f"Failed to check for new deposits: {e}")
                return 0

            found = 0
            for tx in transactions:
                if tx.hash in self._processed or tx.is_pending:
                    continue

                try:
                    if await self._process(tx, custodial):
                        found += 1
                except Exception as e:
                    # Left unprocessed so the next scan retries it
                    logger.warning(f"Failed to inspect transaction {tx.hash}: {e}")
                    continue

                self._processed.add(tx.hash)

        if found:
            logger.info(f"Deposit scan complete: {found} new deposit(s)")
        return found

    async def verify_deposit(self, tx_hash: str, expected_sender: str) -> DepositVerification:
        """Manually verify and credit one deposit transaction"""
        custodial = self.chain.address
        if not custodial:
            return DepositVerification(success=False, error="Bot wallet not configured")

        if tx_hash in self._processed:
            return DepositVerification(success=False, error="Transaction already processed")

        try:
            if await self.ledger.is_deposit_recorded(tx_hash):
                self._processed.add(tx_hash)
                return DepositVerification(success=False, error="Transaction already processed")

            tx = await self.chain.get_transaction_by_hash(tx_hash)
            if tx is None or not tx.success:
                return DepositVerification(success=False, error="Transaction not found or failed")

            if not addresses_equal(tx.sender, expected_sender):
                return DepositVerification(success=False, error="Transaction sender does not match")

            deposit = extract_deposit(tx, custodial)
            if deposit is None:
                return DepositVerification(success=False, error="No valid deposit found in transaction")

            credited = await self.ledger.record_deposit(expected_sender, deposit.token, deposit.amount, tx_hash)
            self._processed.add(tx_hash)
            if not credited:
                return DepositVerification(success=False, error="Transaction already processed")

        except TwapBotError as e:
            logger.error(f"Failed to verify deposit {tx_hash}: {e.message}")
            return DepositVerification(success=False, error=e.message)
        except Exception as e:
            logger.error(f"Failed to verify deposit {tx_hash}: {e}")
            return DepositVerification(success=False, error=str(e) or "Failed to verify transaction")

        logger.info(f"Deposit verified: {deposit.amount} {deposit.token} from {short_address(expected_sender)}")
        self._notify(normalize_address(expected_sender))
        return DepositVerification(success=True, amount=deposit.amount, token=deposit.token)

    async def get_deposits(self, wallet_address: str) -> List[DepositRecord]:
        return await self.ledger.get_deposits(wallet_address)

    def start(self) -> None:
        if not self.chain.is_configured():
            logger.warning("Custodial wallet not configured - deposit monitoring disabled")
            return
        self._scanner.start()

    def stop(self) -> None:
        self._scanner.stop()
