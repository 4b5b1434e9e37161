# coding: utf-8
"""
Chain Service for the Movement network

Reads go straight to the Aptos-compatible REST API (aiohttp, rpc_retry).
Transactions are built, signed and submitted with aptos-sdk using the
custodial key from PRIVATE_KEY, then polled until committed.
"""
import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import RestClient
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import EntryFunction, TransactionArgument, TransactionPayload
from aptos_sdk.type_tag import StructTag, TypeTag
from loguru import logger

from config.config import (
    PRIVATE_KEY,
    RPC_URL,
    SUPPORTED_TOKENS,
    TX_CONFIRMATION_TIMEOUT_SECONDS,
    get_network_config,
)
from src.core.exceptions import (
    ChainUnavailableError,
    SwapExecutionError,
    TwapBotError,
    WalletNotConfiguredError,
)
from src.services.chain_schemas import ChainTransaction, CoinStoreResource, LedgerInfo
from src.utils.address import normalize_address
from src.utils.retry import rpc_retry, tx_retry


class ChainService:
    """
    Movement chain collaborator

    Features:
    - custodial account loaded lazily from the private key
    - balance lookup per supported token (CoinStore resources)
    - recent transaction listing and lookup by hash
    - coin transfers and arbitrary entry-function submission
    - confirmation polling with a bounded timeout
    """

    POLL_INTERVAL_SECONDS = 1.0
    REQUEST_TIMEOUT_SECONDS = 15

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        confirmation_timeout: Optional[float] = None,
    ):
        self.rpc_url = (rpc_url or RPC_URL).rstrip("/")
        self._private_key = PRIVATE_KEY if private_key is None else private_key
        self.confirmation_timeout = confirmation_timeout or TX_CONFIRMATION_TIMEOUT_SECONDS
        self._account: Optional[Account] = None
        self._rest_client: Optional[RestClient] = None

    # ===========================
    # ACCOUNT
    # ===========================

    def _load_account(self) -> Optional[Account]:
        if self._account is not None:
            return self._account
        if not self._private_key:
            return None

        key = self._private_key.strip()
        if key.startswith("ed25519-priv-"):
            key = key[len("ed25519-priv-"):]

        try:
            self._account = Account.load_key(key)
        except Exception as e:
            logger.error(f"Failed to load custodial wallet from PRIVATE_KEY: {e}")
            return None

        logger.info(f"Custodial wallet initialized: {self.address}")
        return self._account

    def _require_account(self) -> Account:
        account = self._load_account()
        if account is None:
            raise WalletNotConfiguredError()
        return account

    @property
    def address(self) -> Optional[str]:
        """Custodial address (normalized) or None when unconfigured"""
        account = self._load_account()
        if account is None:
            return None
        return normalize_address(str(account.address()))

    def is_configured(self) -> bool:
        return bool(self._private_key)

    def explorer_url(self, tx_hash: str) -> str:
        return f"{get_network_config()['explorer_url']}/txn/{tx_hash}"

    def _client(self) -> RestClient:
        if self._rest_client is None:
            self._rest_client = RestClient(self.rpc_url)
        return self._rest_client

    async def close(self) -> None:
        if self._rest_client is not None:
            await self._rest_client.close()
            self._rest_client = None

    # ===========================
    # READS
    # ===========================

    @rpc_retry
    async def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        """
        GET {rpc_url}{path}

        Returns:
            Parsed JSON, or None on 404 when allow_404

        Raises:
            ChainUnavailableError: non-2xx (transient for 429/5xx)
        """
        url = f"{self.rpc_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT_SECONDS)

        async with aiohttp.ClientSession() as session:
            async with session.get(url, params=params, timeout=timeout) as response:
                if response.status == 200:
                    return await response.json()

                if response.status == 404 and allow_404:
                    return None

                body = await response.text()
                transient = response.status == 429 or response.status >= 500
                raise ChainUnavailableError(
                    f"RPC error {response.status} for {path}: {body[:200]}",
                    transient=transient,
                )

    async def get_balances(self, address: Optional[str] = None) -> Dict[str, Decimal]:
        """
        On-chain balance of every supported token (0 for missing coin stores)

        Args:
            address: Account to inspect (custodial wallet by default)
        """
        owner = normalize_address(address) if address else self.address
        if not owner:
            raise WalletNotConfiguredError()

        balances: Dict[str, Decimal] = {}
        for symbol, info in SUPPORTED_TOKENS.items():
            resource_type = f"0x1::coin::CoinStore<{info.coin_type}>"
            data = await self._get_json(
                f"/accounts/{owner}/resource/{resource_type}", allow_404=True
            )
            if data is None:
                balances[symbol] = Decimal("0")
                continue
            resource = CoinStoreResource.model_validate(data)
            balances[symbol] = info.from_raw(resource.data.value)

        logger.debug(f"Balances for {owner}: {balances}")
        return balances

    async def get_account_transactions(
        self, address: Optional[str] = None, limit: int = 100
    ) -> List[ChainTransaction]:
        """Recent transactions of an account (newest window of `limit`)"""
        owner = normalize_address(address) if address else self.address
        if not owner:
            raise WalletNotConfiguredError()

        data = await self._get_json(
            f"/accounts/{owner}/transactions", params={"limit": limit}, allow_404=True
        )
        if not data:
            return []
        return [ChainTransaction.model_validate(item) for item in data]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        """Transaction by hash, None if unknown to the node"""
        data = await self._get_json(f"/transactions/by_hash/{tx_hash}", allow_404=True)
        if data is None:
            return None
        return ChainTransaction.model_validate(data)

    async def wait_for_transaction(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> ChainTransaction:
        """
        Poll until the transaction is committed

        Raises:
            ChainUnavailableError: not committed within timeout (not transient,
                the transaction may still land)
        """
        deadline = time.monotonic() + (timeout or self.confirmation_timeout)

        while True:
            tx = await self.get_transaction_by_hash(tx_hash)
            if tx is not None and not tx.is_pending:
                return tx

            if time.monotonic() >= deadline:
                raise ChainUnavailableError(
                    f"Transaction {tx_hash} not confirmed after {timeout or self.confirmation_timeout}s",
                    transient=False,
                )
            await asyncio.sleep(self.POLL_INTERVAL_SECONDS)

    async def check_connection(self) -> int:
        """
        Ledger info round-trip

        Returns:
            Latency in ms, or -1 on failure
        """
        start = time.monotonic()
        try:
            data = await self._get_json("/")
            info = LedgerInfo.model_validate(data)
        except Exception as e:
            logger.error(f"RPC connection test failed: {e}")
            return -1

        duration = int((time.monotonic() - start) * 1000)
        logger.debug(f"RPC connection OK (chain_id={info.chain_id}, {duration}ms)")
        return duration

    # ===========================
    # TRANSACTIONS
    # ===========================

    async def _confirm(self, tx_hash: str) -> str:
        """Wait for commit; on-chain failure raises with the VM status verbatim"""
        committed = await self.wait_for_transaction(tx_hash)
        if not committed.success:
            logger.error(f"Transaction failed on-chain: {tx_hash} ({committed.vm_status})")
            raise SwapExecutionError(f"Transaction failed: {committed.vm_status}", tx_hash=tx_hash)
        return tx_hash

    @tx_retry
    async def _submit_transfer(self, destination: str, coin_type: str, raw_amount: int) -> str:
        account = self._require_account()
        payload = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            [TypeTag(StructTag.from_str(coin_type))],
            [
                TransactionArgument(AccountAddress.from_str(destination), Serializer.struct),
                TransactionArgument(raw_amount, Serializer.u64),
            ],
        )
        client = self._client()
        signed = await client.create_bcs_signed_transaction(account, TransactionPayload(payload))
        return await client.submit_bcs_transaction(signed)

    async def transfer(self, destination: str, coin_type: str, raw_amount: int) -> str:
        """
        0x1::coin::transfer from the custodial wallet

        Returns:
            Committed transaction hash

        Raises:
            WalletNotConfiguredError: no PRIVATE_KEY
            SwapExecutionError: submission failed or rejected on-chain
        """
        destination = normalize_address(destination)
        logger.info(f"Submitting transfer of {raw_amount} raw {coin_type} to {destination}")

        try:
            tx_hash = await self._submit_transfer(destination, coin_type, raw_amount)
        except TwapBotError:
            raise
        except Exception as e:
            raise SwapExecutionError(f"Transfer submission failed: {e}") from e

        logger.info(f"Transfer submitted, waiting for confirmation: {tx_hash}")
        return await self._confirm(tx_hash)

    @tx_retry
    async def _submit_payload(self, payload: Dict[str, Any]) -> str:
        account = self._require_account()
        return await self._client().submit_transaction(account, payload)

    async def submit_entry_function(
        self, function: str, type_arguments: List[str], arguments: List[Any]
    ) -> str:
        """
        Sign and submit an arbitrary entry function (JSON payload), wait for commit

        Used for aggregator-built swap transactions.
        """
        payload = {
            "type": "entry_function_payload",
            "function": function,
            "type_arguments": type_arguments,
            "arguments": arguments,
        }

        try:
            tx_hash = await self._submit_payload(payload)
        except TwapBotError:
            raise
        except Exception as e:
            raise SwapExecutionError(f"Transaction submission failed: {e}") from e

        logger.info(f"Entry function {function} submitted: {tx_hash}")
        return await self._confirm(tx_hash)


# Global instance
_chain_service: Optional[ChainService] = None


def get_chain_service() -> ChainService:
    """Get or create the chain service singleton"""
    global _chain_service
    if _chain_service is None:
        _chain_service = ChainService()
    return _chain_service
