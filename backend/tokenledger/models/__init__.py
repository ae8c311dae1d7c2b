"""Domain models"""
from tokenledger.models.events import (
    ZERO_ADDRESS,
    EventKind,
    IndexedRecord,
    LedgerEvent,
    TransferPayload,
    SplitPayload,
    SymbolChangePayload,
    AllowlistUpdatePayload,
)
from tokenledger.models.transaction import Transaction, TransactionKind, classify_event
from tokenledger.models.snapshot import HolderEntry, LedgerSnapshot
from tokenledger.models.history import HistoryFilters, HistoryPage
from tokenledger.models.wallet_row import WalletRow, WalletRole

__all__ = [
    "ZERO_ADDRESS",
    "EventKind",
    "IndexedRecord",
    "LedgerEvent",
    "TransferPayload",
    "SplitPayload",
    "SymbolChangePayload",
    "AllowlistUpdatePayload",
    # Derived history
    "Transaction",
    "TransactionKind",
    "classify_event",
    "HistoryFilters",
    "HistoryPage",
    # Cap table
    "HolderEntry",
    "LedgerSnapshot",
    # Presentation
    "WalletRow",
    "WalletRole",
]
