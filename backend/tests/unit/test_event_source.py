"""Unit tests for the event source adapter"""
import asyncio

import pytest

from tokenledger.exceptions import SourceUnavailable, ValidationError
from tokenledger.models.events import EventKind
from tokenledger.services.event_source import EventSource, split_range

from conftest import (
    ALICE,
    BOB,
    CAROL,
    TOKEN,
    allowlist_update,
    make_scenario_provider,
    no_sleep,
    symbol_change,
    transfer,
)


@pytest.fixture
def provider():
    return make_scenario_provider([
        transfer(105, BOB, CAROL, 50, log_index=1),
        allowlist_update(102, CAROL),
        symbol_change(112, "CEQ", "CEQX"),
    ])


@pytest.fixture
def source(provider, retry_policy):
    return EventSource(provider, TOKEN, policy=retry_policy, sleep=no_sleep)


class TestSplitRange:
    """Tests for block range chunking"""

    def test_no_chunking(self):
        assert split_range(100, 120, 0) == [(100, 120)]

    def test_even_chunks(self):
        assert split_range(0, 9, 5) == [(0, 4), (5, 9)]

    def test_uneven_chunks(self):
        assert split_range(10, 22, 5) == [(10, 14), (15, 19), (20, 22)]

    def test_single_block(self):
        assert split_range(7, 7, 5) == [(7, 7)]


class TestQueryEvents:
    """Tests for event queries"""

    @pytest.mark.asyncio
    async def test_sorted_by_block_and_log_index(self, source):
        """Test that merged results are in (block, log index) order"""
        events = await source.query_events(
            {EventKind.TRANSFER, EventKind.SPLIT, EventKind.SYMBOL_CHANGE}, 100, 120
        )
        keys = [e.sort_key for e in events]
        assert keys == sorted(keys)
        assert [e.kind for e in events] == [
            EventKind.TRANSFER,
            EventKind.TRANSFER,
            EventKind.TRANSFER,
            EventKind.SPLIT,
            EventKind.SYMBOL_CHANGE,
        ]

    @pytest.mark.asyncio
    async def test_only_requested_kinds(self, source):
        """Test that allowlist updates only appear when asked for"""
        events = await source.query_events({EventKind.TRANSFER}, 100, 120)
        assert all(e.kind == EventKind.TRANSFER for e in events)

        allowlist = await source.query_events({EventKind.ALLOWLIST_UPDATE}, 100, 120)
        assert len(allowlist) == 1

    @pytest.mark.asyncio
    async def test_one_query_per_kind(self, source, provider):
        """Test that each kind is queried separately"""
        await source.query_events({EventKind.TRANSFER, EventKind.SPLIT}, 100, 120)
        assert sorted(len(kinds) for kinds, _, _ in provider.query_calls) == [1, 1]

    @pytest.mark.asyncio
    async def test_range_is_inclusive(self, source):
        events = await source.query_events({EventKind.TRANSFER}, 105, 105)
        assert [e.index for e in events] == [105, 105]

    @pytest.mark.asyncio
    async def test_address_filter_case_insensitive(self, source):
        """Test client-side address filtering on either endpoint"""
        events = await source.query_events({EventKind.TRANSFER}, 100, 120, address=CAROL.upper().replace("0X", "0x"))
        assert len(events) == 1
        assert events[0].payload.to_address == CAROL

        events = await source.query_events({EventKind.TRANSFER}, 100, 120, address=BOB)
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_address_filter_excludes_system_events(self, source):
        """Test that events without transfer endpoints never match an address"""
        events = await source.query_events(
            {EventKind.SPLIT, EventKind.SYMBOL_CHANGE, EventKind.TRANSFER}, 100, 120, address=ALICE
        )
        assert all(e.kind == EventKind.TRANSFER for e in events)

    @pytest.mark.asyncio
    async def test_empty_kinds(self, source, provider):
        assert await source.query_events(set(), 100, 120) == []
        assert provider.query_calls == []

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, source, provider):
        """Test validation before any network call"""
        with pytest.raises(ValidationError):
            await source.query_events({EventKind.TRANSFER}, 120, 100)
        assert provider.query_calls == []

    @pytest.mark.asyncio
    async def test_chunked_queries(self, provider, retry_policy):
        """Test that ranges are split into chunks and results merged"""
        source = EventSource(provider, TOKEN, policy=retry_policy, chunk_size=5, sleep=no_sleep)
        events = await source.query_events({EventKind.TRANSFER}, 100, 120)

        assert [(f, t) for _, f, t in provider.query_calls] == [
            (100, 104), (105, 109), (110, 114), (115, 119), (120, 120),
        ]
        assert [e.index for e in events] == [101, 105, 105]


class TestRetries:
    """Tests for retry behavior of event queries"""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, source, provider):
        """Test that a rate-limited query succeeds on retry"""
        provider.query_failures = [Exception("Too many requests")]
        events = await source.query_events({EventKind.TRANSFER}, 100, 120)
        assert len(events) == 3
        assert len(provider.query_calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_source_unavailable(self, source, provider):
        """Test that a persistent failure is reported with its range"""
        provider.query_failures = [ConnectionError("reset")] * 3
        with pytest.raises(SourceUnavailable) as exc_info:
            await source.query_events({EventKind.TRANSFER}, 100, 120)

        error = exc_info.value
        assert error.kind == EventKind.TRANSFER.value
        assert (error.from_index, error.to_index) == (100, 120)
        assert error.attempts == 3
        assert isinstance(error.__cause__, ConnectionError)
        assert error.retryable

    @pytest.mark.asyncio
    async def test_non_retryable_failure_not_retried(self, source, provider):
        """Test that logic errors fail fast but are still wrapped"""
        provider.query_failures = [ValueError("query returned more than 10000 results")]
        with pytest.raises(SourceUnavailable) as exc_info:
            await source.query_events({EventKind.TRANSFER}, 100, 120)
        assert len(provider.query_calls) == 1
        assert isinstance(exc_info.value.__cause__, ValueError)


class StallingProvider:
    """Transfer queries hang until cancelled, every other kind fails outright"""

    def __init__(self):
        self.cancelled = False

    async def query_events(self, entity_id, kinds, from_index, to_index):
        if EventKind.TRANSFER in set(kinds):
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
            return []
        raise ValueError("execution reverted")


class TestCancellation:
    """Tests for sibling queries when one kind fails"""

    @pytest.mark.asyncio
    async def test_failed_kind_cancels_pending_queries(self, retry_policy):
        """Test that a failing kind cancels the still-running kinds"""
        provider = StallingProvider()
        source = EventSource(provider, TOKEN, policy=retry_policy, sleep=no_sleep)

        with pytest.raises(SourceUnavailable) as exc_info:
            await asyncio.wait_for(
                source.query_events({EventKind.TRANSFER, EventKind.SPLIT}, 100, 120),
                timeout=5,
            )

        assert exc_info.value.kind == EventKind.SPLIT.value
        assert provider.cancelled
