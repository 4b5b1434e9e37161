"""
Boundary schemas for Movement (Aptos REST) JSON responses.

Raw node responses are validated here before any service reads them.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventGuid(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_address: Optional[str] = None
    creation_number: Optional[str] = None


class ChainEvent(BaseModel):
    """Event emitted by a committed transaction"""

    model_config = ConfigDict(extra="ignore")

    type: str
    guid: Optional[EventGuid] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_deposit(self) -> bool:
        return "::coin::deposit" in self.type.lower() or "::coin::coindeposit" in self.type.lower()

    @property
    def account(self) -> Optional[str]:
        """Receiving account: event handle owner, or `account` field of module events"""
        if self.guid and self.guid.account_address and self.guid.account_address != "0x0":
            return self.guid.account_address
        account = self.data.get("account")
        return account if isinstance(account, str) else None

    @property
    def amount(self) -> Optional[int]:
        try:
            return int(self.data.get("amount"))
        except (TypeError, ValueError):
            return None


class EntryFunctionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    function: Optional[str] = None
    type_arguments: List[str] = Field(default_factory=list)
    arguments: List[Any] = Field(default_factory=list)


class ChainTransaction(BaseModel):
    """
    Transaction as returned by /transactions/by_hash and /accounts/{a}/transactions

    Pending transactions carry no `success`; it defaults to False.
    """

    model_config = ConfigDict(extra="ignore")

    hash: str
    type: Optional[str] = None
    version: Optional[str] = None
    sender: Optional[str] = None
    success: bool = False
    vm_status: Optional[str] = None
    timestamp: Optional[str] = None
    payload: Optional[EntryFunctionPayload] = None
    events: List[ChainEvent] = Field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.type == "pending_transaction"


class CoinStoreData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    coin: Dict[str, Any]

    @property
    def value(self) -> int:
        return int(self.coin.get("value", 0))


class CoinStoreResource(BaseModel):
    """0x1::coin::CoinStore<T> account resource"""

    model_config = ConfigDict(extra="ignore")

    type: str
    data: CoinStoreData


class LedgerInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chain_id: int
    ledger_version: Optional[str] = None
    block_height: Optional[str] = None
