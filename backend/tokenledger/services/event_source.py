"""Event source adapter: retrying, filtering event queries against the ledger"""
import asyncio
from typing import Iterable, List, Optional, Tuple

import structlog

from tokenledger.exceptions import SourceUnavailable, ValidationError
from tokenledger.models.events import EventKind, LedgerEvent
from tokenledger.services.provider import LedgerProvider
from tokenledger.services.retry import RetryExhausted, RetryPolicy, with_retry

logger = structlog.get_logger()


def split_range(from_index: int, to_index: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Split [from_index, to_index] into consecutive chunks of at most chunk_size blocks"""
    if chunk_size <= 0:
        return [(from_index, to_index)]
    ranges = []
    start = from_index
    while start <= to_index:
        end = min(to_index, start + chunk_size - 1)
        ranges.append((start, end))
        start = end + 1
    return ranges


class EventSource:
    """
    Queries token events with retry and client-side address filtering.

    Each call names the event kinds it wants explicitly; there is no global
    kind filter. Results are always sorted by (block, log index).
    """

    def __init__(
        self,
        provider: LedgerProvider,
        entity_id: str,
        policy: Optional[RetryPolicy] = None,
        chunk_size: int = 0,
        sleep=asyncio.sleep,
    ):
        self.provider = provider
        self.entity_id = entity_id
        self.policy = policy or RetryPolicy()
        self.chunk_size = chunk_size
        self._sleep = sleep

    async def _query_kind(self, kind: EventKind, from_index: int, to_index: int) -> List[LedgerEvent]:
        events: List[LedgerEvent] = []
        for chunk_from, chunk_to in split_range(from_index, to_index, self.chunk_size):
            try:
                events.extend(await with_retry(
                    self.policy,
                    lambda: self.provider.query_events(self.entity_id, {kind}, chunk_from, chunk_to),
                    sleep=self._sleep,
                    description=f"{kind.value} events {chunk_from}-{chunk_to}",
                ))
            except RetryExhausted as e:
                raise SourceUnavailable(
                    kind.value, chunk_from, chunk_to,
                    attempts=e.attempts, retry_after=e.last_delay,
                ) from e.__cause__
            except Exception as e:
                raise SourceUnavailable(kind.value, chunk_from, chunk_to, attempts=1) from e
        return events

    async def query_events(
        self,
        kinds: Iterable[EventKind],
        from_index: int,
        to_index: int,
        address: Optional[str] = None,
    ) -> List[LedgerEvent]:
        """
        Query events of the given kinds in [from_index, to_index].

        When ``address`` is given, everything is fetched and filtered here on
        an exact case-insensitive match of the transfer's from or to address:
        one round trip per kind instead of one per endpoint. Events without a
        transfer endpoint never match an address filter.

        Raises:
            SourceUnavailable: a kind's query failed after retries
        """
        kinds = sorted(set(kinds), key=lambda k: k.value)
        if not kinds:
            return []
        if from_index > to_index:
            raise ValidationError(f"Invalid block range: {from_index} is after {to_index}")

        tasks = [
            asyncio.ensure_future(self._query_kind(kind, from_index, to_index))
            for kind in kinds
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # One kind failed: stop the others from retrying in the background
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        events = [event for batch in results for event in batch]

        if address:
            events = [event for event in events if event.involves(address)]

        events.sort(key=lambda e: e.sort_key)

        logger.debug(
            "Queried events",
            kinds=[k.value for k in kinds],
            from_block=from_index,
            to_block=to_index,
            address=address,
            count=len(events),
        )
        return events
