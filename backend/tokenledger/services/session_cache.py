"""Session-scoped caches shared by the resolver and the history feed"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from tokenledger.models.transaction import Transaction

logger = structlog.get_logger()

RangeKey = Tuple[int, int, str]


@dataclass
class SessionCache:
    """
    Caches with the lifetime of one browsing session / client.

    Every write is idempotent: the same key always maps to the same value
    (blocks and their timestamps never change once mined), so concurrent
    writers cannot corrupt it. Only the index-range results depend on the
    active filters and are dropped wholesale when they change.
    """
    deployment_index: Optional[int] = None
    decimals: Optional[int] = None
    timestamps: Dict[int, int] = field(default_factory=dict)
    date_indices: Dict[int, int] = field(default_factory=dict)
    ranges: Dict[RangeKey, List[Transaction]] = field(default_factory=dict)
    parent: Optional["SessionCache"] = field(default=None, repr=False, compare=False)

    def get_range(self, from_index: int, to_index: int, filter_key: str) -> Optional[List[Transaction]]:
        return self.ranges.get((from_index, to_index, filter_key))

    def put_range(self, from_index: int, to_index: int, filter_key: str, transactions: List[Transaction]) -> None:
        self.ranges[(from_index, to_index, filter_key)] = list(transactions)

    def clear_ranges(self) -> None:
        # A fork's ranges belong to the session and are keyed by filter
        if self.parent is not None:
            return
        if self.ranges:
            logger.debug("Cleared block range cache", entries=len(self.ranges))
        self.ranges.clear()

    def get_decimals(self) -> Optional[int]:
        if self.decimals is None and self.parent is not None:
            self.decimals = self.parent.get_decimals()
        return self.decimals

    def set_decimals(self, decimals: int) -> None:
        self.decimals = decimals
        if self.parent is not None:
            self.parent.set_decimals(decimals)

    def clear(self) -> None:
        """Forget everything (e.g. after switching networks)"""
        self.deployment_index = None
        self.decimals = None
        self.timestamps.clear()
        self.date_indices.clear()
        self.ranges.clear()

    def fork(self) -> "SessionCache":
        """
        A cache for a feed with independent filters.

        Block timestamps, date lookups and window results are the session's
        own dicts. Decimals are read through the session, so the first fork
        to fetch them fills them in for every later one.
        """
        return SessionCache(
            deployment_index=self.deployment_index,
            decimals=self.decimals,
            timestamps=self.timestamps,
            date_indices=self.date_indices,
            ranges=self.ranges,
            parent=self,
        )
