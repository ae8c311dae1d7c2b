"""Cap table snapshot model"""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class HolderEntry:
    """One holder row of a cap table."""
    address: str
    balance: int
    ownership_percentage: str  # fixed-point, 6 decimal digits


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Derived ownership state at a specific block.

    Rebuilt on demand per request and never cached. ``holders`` only lists
    non-zero balances. ``rounding_note`` is set when the percentages do not
    sum to exactly 100.000000.
    """
    as_of_index: int
    timestamp: int
    total_supply: int
    holders: List[HolderEntry] = field(default_factory=list)
    symbol: Optional[str] = None
    decimals: int = 0
    rounding_note: Optional[str] = None

    @property
    def holder_count(self) -> int:
        return len(self.holders)
