"""Derived transaction model for the history feed."""
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from tokenledger.models.events import (
    LedgerEvent,
    SplitPayload,
    SymbolChangePayload,
    TransferPayload,
    is_zero_address,
)


class TransactionKind(str, enum.Enum):
    """Transaction kinds shown in the derived history."""
    TRANSFER = "Transfer"
    MINT = "Mint"
    BURN = "Burn"
    SPLIT = "Split"
    SYMBOL_CHANGE = "SymbolChange"


TRANSFER_FAMILY = frozenset({TransactionKind.TRANSFER, TransactionKind.MINT, TransactionKind.BURN})


@dataclass(frozen=True)
class Transaction:
    """
    A typed transaction derived from one ledger event.

    Derived fresh on every query, never persisted.
    """
    id: str
    kind: TransactionKind
    index: int
    timestamp: int
    transaction_id: str
    log_index: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[Decimal] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount_text(self) -> Optional[str]:
        """Amount in plain decimal notation, never exponent form"""
        if self.amount is None:
            return None
        return format(self.amount, "f")

    def involves(self, address: str) -> bool:
        target = address.lower()
        return any(
            a is not None and a.lower() == target
            for a in (self.from_address, self.to_address)
        )


def classify_event(event: LedgerEvent) -> TransactionKind:
    """Map a ledger event to its transaction kind.

    Transfers are refined into Mint (from the zero address) and Burn (to the
    zero address). Allowlist updates have no transaction kind.
    """
    match event.payload:
        case TransferPayload(from_address=sender, to_address=recipient):
            if is_zero_address(sender):
                return TransactionKind.MINT
            if is_zero_address(recipient):
                return TransactionKind.BURN
            return TransactionKind.TRANSFER
        case SplitPayload():
            return TransactionKind.SPLIT
        case SymbolChangePayload():
            return TransactionKind.SYMBOL_CHANGE
        case _:
            raise ValueError(f"{event.kind.value} events have no transaction kind")
