"""Session facade: one cache and engine set per session"""
from typing import List, Optional

import structlog

from tokenledger.config import Settings, get_settings
from tokenledger.models.events import IndexedRecord
from tokenledger.models.history import HistoryFilters, HistoryPage
from tokenledger.models.snapshot import LedgerSnapshot
from tokenledger.models.transaction import Transaction
from tokenledger.models.wallet_row import WalletRow
from tokenledger.services.block_lookup import IndexResolver, ProgressCallback
from tokenledger.services.cap_table import LedgerAggregator
from tokenledger.services.event_source import EventSource
from tokenledger.services.history import WindowedHistory
from tokenledger.services.linker import link_transfers
from tokenledger.services.provider import LedgerProvider
from tokenledger.services.retry import RetryPolicy
from tokenledger.services.session_cache import SessionCache

logger = structlog.get_logger()


class LedgerSession:
    """
    Entry point for a client of the engine.

    Owns the session cache and wires the resolver, event source, cap table
    aggregator and history feed around one provider and one token address.
    """

    def __init__(
        self,
        provider: LedgerProvider,
        entity_id: str,
        settings: Optional[Settings] = None,
        policy: Optional[RetryPolicy] = None,
        sleep=None,
    ):
        settings = settings or get_settings()
        self.provider = provider
        self.entity_id = entity_id
        self.settings = settings
        self.cache = SessionCache()

        source_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.event_source = EventSource(
            provider,
            entity_id,
            policy=policy or RetryPolicy.from_settings(settings),
            chunk_size=settings.event_query_chunk_size,
            **source_kwargs,
        )
        self.resolver = IndexResolver(provider, entity_id, self.cache)
        self.aggregator = LedgerAggregator(
            provider,
            entity_id,
            self.resolver,
            self.event_source,
            batch_size=settings.balance_batch_size,
        )
        self.history = WindowedHistory(
            provider,
            entity_id,
            self.resolver,
            self.event_source,
            self.cache,
            estimated_events_per_index=settings.estimated_events_per_index,
        )

    async def get_tip(self) -> IndexedRecord:
        return await self.resolver.get_tip()

    async def get_deployment_index(self, progress: Optional[ProgressCallback] = None) -> int:
        return await self.resolver.deployment_index(progress)

    async def resolve_index_for_timestamp(
        self,
        timestamp: int,
        progress: Optional[ProgressCallback] = None,
    ) -> IndexedRecord:
        """Latest block at or before a Unix timestamp"""
        return await self.resolver.find_index_at_or_before(timestamp, progress)

    async def get_snapshot(self, as_of_index: Optional[int] = None) -> LedgerSnapshot:
        """Cap table at a block (default: latest)"""
        return await self.aggregator.compute_snapshot(as_of_index)

    async def get_history_page(
        self,
        page_number: int = 1,
        page_size: Optional[int] = None,
        filters: Optional[HistoryFilters] = None,
        newest_first: bool = True,
    ) -> HistoryPage:
        return await self.history.page(
            page_number,
            page_size or self.settings.default_page_size,
            filters,
            newest_first,
        )

    def detached_history(self) -> WindowedHistory:
        """
        A history feed with its own filters and generation.

        Block timestamps, date lookups, window results and decimals stay shared
        with the session, so concurrent callers with different filters do
        not supersede each other.
        """
        return WindowedHistory(
            self.provider,
            self.entity_id,
            self.resolver,
            self.event_source,
            self.cache.fork(),
            estimated_events_per_index=self.settings.estimated_events_per_index,
        )

    async def load_more(self) -> HistoryPage:
        return await self.history.load_more()

    @property
    def loaded_transactions(self) -> List[Transaction]:
        return self.history.loaded

    def link_transfers(
        self,
        transactions: List[Transaction],
        filter_address: Optional[str] = None,
    ) -> List[WalletRow]:
        return link_transfers(transactions, filter_address)

    def reset(self) -> None:
        """Drop every cached value, e.g. after the node was switched"""
        self.cache.clear()
        logger.info("Ledger session cache cleared", entity=self.entity_id)
