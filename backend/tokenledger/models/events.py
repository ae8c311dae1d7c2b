"""Raw ledger records and events as read from the external ledger."""
import enum
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: Optional[str]) -> bool:
    """Check 0x-prefixed 20-byte hex address format"""
    if not address:
        return False
    return bool(_ADDRESS_RE.match(address))


def normalize_address(address: str) -> str:
    """Lowercase form used for comparisons and dictionary keys"""
    return address.lower()


def is_zero_address(address: Optional[str]) -> bool:
    return address is not None and address.lower() == ZERO_ADDRESS


class EventKind(str, enum.Enum):
    """Event kinds emitted by the token contract."""
    TRANSFER = "Transfer"
    SPLIT = "Split"
    SYMBOL_CHANGE = "SymbolChange"
    ALLOWLIST_UPDATE = "AllowlistUpdate"


@dataclass(frozen=True)
class IndexedRecord:
    """One unit of the append-only log (a block)."""
    index: int
    timestamp: int


@dataclass(frozen=True)
class TransferPayload:
    from_address: str
    to_address: str
    amount: int


@dataclass(frozen=True)
class SplitPayload:
    new_multiplier: int
    at_index: int


@dataclass(frozen=True)
class SymbolChangePayload:
    old_symbol: str
    new_symbol: str


@dataclass(frozen=True)
class AllowlistUpdatePayload:
    account: str
    approved: bool


EventPayload = Union[TransferPayload, SplitPayload, SymbolChangePayload, AllowlistUpdatePayload]

PAYLOAD_KINDS = {
    TransferPayload: EventKind.TRANSFER,
    SplitPayload: EventKind.SPLIT,
    SymbolChangePayload: EventKind.SYMBOL_CHANGE,
    AllowlistUpdatePayload: EventKind.ALLOWLIST_UPDATE,
}


@dataclass(frozen=True)
class LedgerEvent:
    """
    A single event emitted by the ledger.

    ``transaction_id`` groups events from one atomic operation and
    ``log_index`` is the position of the event within its block.
    """
    payload: EventPayload
    transaction_id: str
    index: int
    log_index: int

    @property
    def kind(self) -> EventKind:
        return PAYLOAD_KINDS[type(self.payload)]

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.index, self.log_index)

    def involves(self, address: str) -> bool:
        """Case-insensitive match on either endpoint of a transfer"""
        if not isinstance(self.payload, TransferPayload):
            return False
        target = normalize_address(address)
        return (
            normalize_address(self.payload.from_address) == target
            or normalize_address(self.payload.to_address) == target
        )
