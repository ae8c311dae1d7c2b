"""
Windowed transaction history.

This service provides:
1. A typed, paginated transaction feed built from ledger events
2. Virtual paging: each page only queries its own block window
3. Per-window caching for the session, dropped when the filters change
4. Date range filters resolved to blocks before any event query
"""
import asyncio
import math
from decimal import Decimal
from typing import FrozenSet, List, Optional, Tuple

import structlog

from tokenledger.exceptions import SupersededRequest, ValidationError
from tokenledger.models.events import (
    EventKind,
    LedgerEvent,
    SplitPayload,
    SymbolChangePayload,
    TransferPayload,
    is_valid_address,
)
from tokenledger.models.history import HistoryFilters, HistoryPage
from tokenledger.models.transaction import Transaction, TransactionKind, classify_event
from tokenledger.services.block_lookup import IndexResolver
from tokenledger.services.event_source import EventSource
from tokenledger.services.provider import LedgerProvider, PointSelector
from tokenledger.services.session_cache import SessionCache

logger = structlog.get_logger()

# Allowlist updates are deliberately not part of the transaction history
HISTORY_EVENT_KINDS: FrozenSet[EventKind] = frozenset({
    EventKind.TRANSFER,
    EventKind.SPLIT,
    EventKind.SYMBOL_CHANGE,
})

KIND_SOURCES = {
    TransactionKind.TRANSFER: EventKind.TRANSFER,
    TransactionKind.MINT: EventKind.TRANSFER,
    TransactionKind.BURN: EventKind.TRANSFER,
    TransactionKind.SPLIT: EventKind.SPLIT,
    TransactionKind.SYMBOL_CHANGE: EventKind.SYMBOL_CHANGE,
}

TIMESTAMP_BATCH_SIZE = 10


def blocks_per_page(page_size: int, estimated_events_per_index: int) -> int:
    """Block window size expected to hold about one page of events"""
    return max(1, math.ceil(page_size / max(estimated_events_per_index, 1)))


def calculate_block_range(
    page_number: int,
    start_block: int,
    end_block: int,
    window: int,
    newest_first: bool,
) -> Tuple[int, int]:
    """
    Block window for a page.

    Newest first walks backward from ``end_block``; oldest first walks
    forward from ``start_block``. The result may be empty (from > to) once
    the pages run past the eligible range.
    """
    if newest_first:
        to_block = end_block - (page_number - 1) * window
        from_block = max(start_block, to_block - window + 1)
    else:
        from_block = start_block + (page_number - 1) * window
        to_block = min(end_block, from_block + window - 1)
    return from_block, to_block


def to_transaction(event: LedgerEvent, timestamp: int, decimals: int) -> Transaction:
    """Convert a ledger event to a transaction"""
    kind = classify_event(event)
    base = dict(
        id=f"{event.transaction_id}-{event.log_index}",
        kind=kind,
        index=event.index,
        timestamp=timestamp,
        transaction_id=event.transaction_id,
        log_index=event.log_index,
    )
    payload = event.payload
    if isinstance(payload, TransferPayload):
        return Transaction(
            **base,
            from_address=payload.from_address,
            to_address=payload.to_address,
            amount=Decimal(payload.amount).scaleb(-decimals),
            data={"raw_amount": str(payload.amount)},
        )
    if isinstance(payload, SplitPayload):
        return Transaction(
            **base,
            data={"multiplier": str(payload.new_multiplier), "block_number": str(payload.at_index)},
        )
    if isinstance(payload, SymbolChangePayload):
        return Transaction(
            **base,
            data={"old_symbol": payload.old_symbol, "new_symbol": payload.new_symbol},
        )
    raise ValueError(f"Unsupported event payload: {type(payload).__name__}")


class WindowedHistory:
    """Paginated transaction feed over a session cache."""

    def __init__(
        self,
        provider: LedgerProvider,
        entity_id: str,
        resolver: IndexResolver,
        event_source: EventSource,
        cache: SessionCache,
        estimated_events_per_index: int = 10,
    ):
        self.provider = provider
        self.entity_id = entity_id
        self.resolver = resolver
        self.event_source = event_source
        self.cache = cache
        self.estimated_events_per_index = estimated_events_per_index

        self._filters = HistoryFilters()
        self._newest_first = True
        self._generation = 0
        self._page_size: Optional[int] = None
        self._current_page = 0
        self._has_more = False
        self._loaded: List[Transaction] = []

    @property
    def loaded(self) -> List[Transaction]:
        """All transactions loaded so far by page() and load_more()"""
        return list(self._loaded)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def filters(self) -> HistoryFilters:
        return self._filters

    def set_filters(self, filters: HistoryFilters, newest_first: bool = True) -> bool:
        """
        Activate a filter set. Returns True if it differs from the active one.

        A change drops the block range cache and supersedes in-flight requests
        started under the previous filters.
        """
        if filters == self._filters and newest_first == self._newest_first:
            return False
        self._filters = filters
        self._newest_first = newest_first
        self._generation += 1
        self._current_page = 0
        self._has_more = False
        self._loaded = []
        self.cache.clear_ranges()
        logger.info("Transaction filters changed", generation=self._generation)
        return True

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise SupersededRequest(generation, self._generation)

    @staticmethod
    def validate(filters: HistoryFilters, page_number: int, page_size: int) -> None:
        """Input checks that need no network access"""
        if page_number < 1:
            raise ValidationError(f"Invalid page number: {page_number}")
        if page_size < 1:
            raise ValidationError(f"Invalid page size: {page_size}")
        if filters.address is not None and not is_valid_address(filters.address):
            raise ValidationError(f"Invalid address: {filters.address}")
        if filters.kinds is not None and not filters.kinds:
            raise ValidationError("At least one transaction type must be selected")
        start, end = filters.start_timestamp, filters.end_timestamp
        if start is not None and end is not None and start > end:
            raise ValidationError("Invalid date range: start date is after end date")

    async def _decimals(self) -> int:
        decimals = self.cache.get_decimals()
        if decimals is None:
            tip = await self.resolver.get_tip()
            decimals = int(await self.provider.get_point_state(
                self.entity_id, PointSelector.DECIMALS, tip.index
            ))
            self.cache.set_decimals(decimals)
        return decimals

    async def date_to_index(self, timestamp: int) -> int:
        """Convert a date to a block number, cached per distinct date"""
        cached = self.cache.date_indices.get(timestamp)
        if cached is not None:
            return cached
        record = await self.resolver.find_index_at_or_before(timestamp)
        self.cache.date_indices[timestamp] = record.index
        return record.index

    async def eligible_range(self, filters: HistoryFilters) -> Tuple[int, int]:
        """[max(deployment, start), min(tip, end)] for the filters"""
        from_block = await self.resolver.deployment_index()
        to_block = (await self.resolver.get_tip()).index

        if filters.start_timestamp is not None:
            from_block = max(from_block, await self.date_to_index(filters.start_timestamp))
        if filters.end_timestamp is not None:
            to_block = min(to_block, await self.date_to_index(filters.end_timestamp))

        if from_block > to_block:
            raise ValidationError("Invalid date range: start date is after end date")
        return from_block, to_block

    async def _timestamps(self, indices: List[int]) -> dict:
        unique = sorted(set(indices))
        result = {}
        for start in range(0, len(unique), TIMESTAMP_BATCH_SIZE):
            batch = unique[start:start + TIMESTAMP_BATCH_SIZE]
            values = await asyncio.gather(*(self.resolver.timestamp_at(i) for i in batch))
            result.update(zip(batch, values))
        return result

    async def fetch_window(
        self,
        from_block: int,
        to_block: int,
        filters: HistoryFilters,
        newest_first: bool,
        generation: int,
    ) -> List[Transaction]:
        """Transactions for one block window, memoized per (window, filters)"""
        filter_key = filters.cache_key(newest_first)
        cached = self.cache.get_range(from_block, to_block, filter_key)
        if cached is not None:
            return list(cached)

        if filters.kinds:
            event_kinds = {KIND_SOURCES[k] for k in filters.kinds} & HISTORY_EVENT_KINDS
        else:
            event_kinds = set(HISTORY_EVENT_KINDS)

        events = await self.event_source.query_events(
            event_kinds, from_block, to_block, address=filters.address
        )
        if newest_first:
            events.reverse()

        decimals = await self._decimals()
        timestamps = await self._timestamps([e.index for e in events])
        transactions = [to_transaction(e, timestamps[e.index], decimals) for e in events]
        if filters.kinds:
            transactions = [tx for tx in transactions if tx.kind in filters.kinds]

        self._check_generation(generation)
        self.cache.put_range(from_block, to_block, filter_key, transactions)
        return transactions

    async def _fetch_page(
        self,
        page_number: int,
        page_size: int,
        filters: HistoryFilters,
        newest_first: bool,
        generation: int,
    ) -> HistoryPage:
        start_block, end_block = await self.eligible_range(filters)

        if filters.address:
            # Address-filtered density is unpredictable: load the whole range once
            if page_number > 1:
                return HistoryPage([], False, page_number, start_block, end_block)
            transactions = await self.fetch_window(start_block, end_block, filters, newest_first, generation)
            return HistoryPage(transactions, False, page_number, start_block, end_block)

        window = blocks_per_page(page_size, self.estimated_events_per_index)
        from_block, to_block = calculate_block_range(page_number, start_block, end_block, window, newest_first)
        if from_block > to_block or from_block < start_block or to_block > end_block:
            return HistoryPage([], False, page_number, None, None)

        transactions = await self.fetch_window(from_block, to_block, filters, newest_first, generation)
        if newest_first:
            has_more = from_block > start_block
        else:
            has_more = to_block < end_block
        return HistoryPage(transactions, has_more, page_number, from_block, to_block)

    async def page(
        self,
        page_number: int = 1,
        page_size: int = 50,
        filters: Optional[HistoryFilters] = None,
        newest_first: bool = True,
    ) -> HistoryPage:
        """
        Fetch one page of the feed and make it the loaded feed.

        Raises:
            ValidationError: invalid page, address or date range
            FutureTimestamp / BeforeOrigin: a date filter is out of range
            SourceUnavailable: event queries failed after retries
            SupersededRequest: the filters changed while this page was loading
        """
        filters = filters or HistoryFilters()
        self.validate(filters, page_number, page_size)
        self.set_filters(filters, newest_first)
        generation = self._generation

        result = await self._fetch_page(page_number, page_size, filters, newest_first, generation)

        self._check_generation(generation)
        self._page_size = page_size
        self._current_page = page_number
        self._has_more = result.has_more
        self._loaded = list(result.transactions)

        logger.info(
            "Loaded transaction page",
            page=page_number,
            from_block=result.from_index,
            to_block=result.to_index,
            count=len(result.transactions),
            has_more=result.has_more,
        )
        return result

    async def load_more(self) -> HistoryPage:
        """Fetch the next page under the active filters and append it"""
        if self._current_page == 0 or self._page_size is None:
            raise ValidationError("No transaction page has been loaded yet")
        if not self._has_more:
            return HistoryPage([], False, self._current_page, None, None)

        generation = self._generation
        next_page = self._current_page + 1
        result = await self._fetch_page(
            next_page, self._page_size, self._filters, self._newest_first, generation
        )

        self._check_generation(generation)
        self._current_page = next_page
        self._has_more = result.has_more
        self._loaded.extend(result.transactions)

        logger.info(
            "Loaded more transactions",
            page=next_page,
            count=len(result.transactions),
            total=len(self._loaded),
            has_more=result.has_more,
        )
        return result
