"""
Transaction history paging models.

Filters are frozen so they can be compared to detect a filter change and
rendered into a stable cache key.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, List, Optional

from tokenledger.models.transaction import Transaction, TransactionKind


def to_unix_timestamp(value: datetime) -> int:
    """Naive datetimes are taken as UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


@dataclass(frozen=True)
class HistoryFilters:
    """Filters for the transaction history feed."""
    address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    kinds: Optional[FrozenSet[TransactionKind]] = None

    @property
    def start_timestamp(self) -> Optional[int]:
        return to_unix_timestamp(self.start_date) if self.start_date else None

    @property
    def end_timestamp(self) -> Optional[int]:
        return to_unix_timestamp(self.end_date) if self.end_date else None

    def cache_key(self, newest_first: bool) -> str:
        kinds = ",".join(sorted(k.value for k in self.kinds)) if self.kinds else "*"
        address = self.address.lower() if self.address else "*"
        order = "desc" if newest_first else "asc"
        return f"{address}|{kinds}|{order}"


@dataclass
class HistoryPage:
    """One page of the transaction feed."""
    transactions: List[Transaction] = field(default_factory=list)
    has_more: bool = False
    page_number: int = 1
    from_index: Optional[int] = None
    to_index: Optional[int] = None
