"""Transaction history schemas"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from tokenledger.models.history import HistoryPage
from tokenledger.models.transaction import Transaction
from tokenledger.models.wallet_row import WalletRow


class SortOrder(str, Enum):
    NEWEST = "desc"
    OLDEST = "asc"


class TransactionResponse(BaseModel):
    """One derived transaction"""
    id: str
    type: str
    block_number: int
    timestamp: int
    block_time: datetime
    tx_hash: str
    log_index: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[str] = None  # decimal string, token units
    data: Dict[str, Any] = {}

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            type=tx.kind.value,
            block_number=tx.index,
            timestamp=tx.timestamp,
            block_time=datetime.fromtimestamp(tx.timestamp, tz=timezone.utc),
            tx_hash=tx.transaction_id,
            log_index=tx.log_index,
            from_address=tx.from_address,
            to_address=tx.to_address,
            amount=tx.amount_text,
            data=tx.data,
        )


class TransactionPageResponse(BaseModel):
    """One page of the transaction feed"""
    transactions: List[TransactionResponse]
    page: int
    page_size: int
    has_more: bool
    from_block: Optional[int] = None
    to_block: Optional[int] = None

    @classmethod
    def from_page(cls, page: HistoryPage, page_size: int) -> "TransactionPageResponse":
        return cls(
            transactions=[TransactionResponse.from_transaction(tx) for tx in page.transactions],
            page=page.page_number,
            page_size=page_size,
            has_more=page.has_more,
            from_block=page.from_index,
            to_block=page.to_index,
        )


class WalletRowResponse(BaseModel):
    """One wallet's side of a transaction"""
    id: str
    address: str
    role: str
    linked_row_id: Optional[str] = None
    is_linked: bool
    transaction: TransactionResponse

    @classmethod
    def from_row(cls, row: WalletRow) -> "WalletRowResponse":
        return cls(
            id=row.id,
            address=row.address,
            role=row.role.value,
            linked_row_id=row.linked_row_id,
            is_linked=row.is_linked,
            transaction=TransactionResponse.from_transaction(row.transaction),
        )


class WalletRowPageResponse(BaseModel):
    rows: List[WalletRowResponse]
    page: int
    has_more: bool
