"""
Block lookup by timestamp and contract deployment detection.

Both searches are binary searches over a monotonic function of the block
number:
1. contract existence (false -> true, never flips back) for the deployment block
2. block timestamp (non-decreasing) for "latest block at or before a time"

Errors from individual probes propagate unmodified; the caller owns retries.
"""
from typing import Awaitable, Callable, Optional

import structlog

from tokenledger.exceptions import BeforeOrigin, FutureTimestamp, OriginNotFound
from tokenledger.models.events import IndexedRecord
from tokenledger.services.provider import LedgerProvider
from tokenledger.services.session_cache import SessionCache

logger = structlog.get_logger()

# Called with (current_block, min_block, max_block) on every probe
ProgressCallback = Callable[[int, int, int], None]
ExistencePredicate = Callable[[int], Awaitable[bool]]


class IndexResolver:
    """Converts wall-clock timestamps into block numbers."""

    def __init__(self, provider: LedgerProvider, entity_id: str, cache: SessionCache):
        self.provider = provider
        self.entity_id = entity_id
        self.cache = cache

    async def timestamp_at(self, index: int) -> int:
        """Get block timestamp with caching"""
        cached = self.cache.timestamps.get(index)
        if cached is not None:
            return cached
        record = await self.provider.get_record_at(index)
        self.cache.timestamps[index] = record.timestamp
        return record.timestamp

    async def get_tip(self) -> IndexedRecord:
        tip = await self.provider.get_tip()
        self.cache.timestamps[tip.index] = tip.timestamp
        return tip

    async def _code_exists(self, index: int) -> bool:
        return await self.provider.get_entity_existence(self.entity_id, index)

    async def find_origin_index(
        self,
        predicate: Optional[ExistencePredicate] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Find the first block where ``predicate`` holds.

        The predicate defaults to "contract code exists at this block" and
        must be monotonic. Raises OriginNotFound if it is false at the tip.
        """
        predicate = predicate or self._code_exists
        tip = await self.get_tip()

        if not await predicate(tip.index):
            raise OriginNotFound(self.entity_id, tip.index)

        min_block = 0
        max_block = tip.index
        origin = tip.index

        while min_block <= max_block:
            mid_block = (min_block + max_block) // 2
            if progress:
                progress(mid_block, min_block, max_block)

            if await predicate(mid_block):
                # Exists here, search earlier
                origin = mid_block
                max_block = mid_block - 1
            else:
                min_block = mid_block + 1

        logger.debug("Found origin block", entity=self.entity_id, block=origin)
        return origin

    async def deployment_index(self, progress: Optional[ProgressCallback] = None) -> int:
        """Contract deployment block, computed once per session"""
        if self.cache.deployment_index is None:
            self.cache.deployment_index = await self.find_origin_index(progress=progress)
            logger.info(
                "Resolved deployment block",
                entity=self.entity_id,
                block=self.cache.deployment_index,
            )
        return self.cache.deployment_index

    async def find_index_at_or_before(
        self,
        target_timestamp: int,
        progress: Optional[ProgressCallback] = None,
    ) -> IndexedRecord:
        """
        Find the latest block with timestamp <= target_timestamp.

        Among blocks sharing a timestamp the largest block number wins.

        Raises:
            FutureTimestamp: target is after the tip's timestamp
            BeforeOrigin: target is before the deployment block's timestamp
        """
        tip = await self.get_tip()
        if target_timestamp > tip.timestamp:
            raise FutureTimestamp(target_timestamp, tip.timestamp)

        deployment = await self.deployment_index(progress)
        deployment_timestamp = await self.timestamp_at(deployment)
        if target_timestamp < deployment_timestamp:
            raise BeforeOrigin(deployment, timestamp=target_timestamp)

        min_block = deployment
        max_block = tip.index
        result_block = deployment

        while min_block <= max_block:
            mid_block = (min_block + max_block) // 2
            if progress:
                progress(mid_block, min_block, max_block)

            if await self.timestamp_at(mid_block) <= target_timestamp:
                # Candidate; keep looking for a later block still <= target
                result_block = mid_block
                min_block = mid_block + 1
            else:
                max_block = mid_block - 1

        result = IndexedRecord(index=result_block, timestamp=await self.timestamp_at(result_block))
        logger.debug(
            "Resolved block for timestamp",
            target_timestamp=target_timestamp,
            block=result.index,
            block_timestamp=result.timestamp,
        )
        return result
