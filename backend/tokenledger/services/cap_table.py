"""
Cap table service: ownership snapshot of the token at any block.

Balances and total supply are read with point queries at the target block
(authoritative, split multiplier included). The set of candidate holders is
discovered by replaying Transfer events from the deployment block, because
the contract offers no "list all holders" primitive.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from tokenledger.exceptions import BeforeOrigin, FutureIndex
from tokenledger.models.events import EventKind, TransferPayload, is_zero_address, normalize_address
from tokenledger.models.snapshot import HolderEntry, LedgerSnapshot
from tokenledger.services.block_lookup import IndexResolver
from tokenledger.services.event_source import EventSource
from tokenledger.services.provider import LedgerProvider, PointSelector

logger = structlog.get_logger()

PRECISION_SCALE = 1_000_000  # 6 decimal places
PERCENTAGE_SCALE = 100
ROUNDING_NOTE = "Percentages may not sum to exactly 100% due to rounding"


def calculate_ownership_percentage(balance: int, total_supply: int) -> str:
    """
    Ownership percentage with 6 decimal digits using integer arithmetic.

    Formula: (balance * 100 * 1e6) // total_supply, e.g. "50.000000".
    """
    if total_supply == 0:
        return "0.000000"
    scaled = (balance * PERCENTAGE_SCALE * PRECISION_SCALE) // total_supply
    whole, fractional = divmod(scaled, PRECISION_SCALE)
    return f"{whole}.{fractional:06d}"


def _parse_scaled(percentage: str) -> int:
    whole, _, fractional = percentage.partition(".")
    return int(whole or "0") * PRECISION_SCALE + int((fractional or "0").ljust(6, "0")[:6])


def calculate_percentage_sum(percentages: Iterable[str]) -> Tuple[str, Optional[str]]:
    """Sum percentage strings exactly; return (sum, rounding note or None)"""
    percentages = list(percentages)
    if not percentages:
        return "0.000000", None

    total = sum(_parse_scaled(p) for p in percentages)
    whole, fractional = divmod(total, PRECISION_SCALE)
    note = ROUNDING_NOTE if total != PERCENTAGE_SCALE * PRECISION_SCALE else None
    return f"{whole}.{fractional:06d}", note


def collect_holder_candidates(events) -> List[str]:
    """Every non-zero address that ever sent or received, in first-seen order"""
    seen: Dict[str, str] = {}
    for event in events:
        if not isinstance(event.payload, TransferPayload):
            continue
        for address in (event.payload.from_address, event.payload.to_address):
            if address and not is_zero_address(address):
                seen.setdefault(normalize_address(address), address)
    return list(seen.values())


class LedgerAggregator:
    """Builds cap table snapshots from point reads and Transfer events."""

    def __init__(
        self,
        provider: LedgerProvider,
        entity_id: str,
        resolver: IndexResolver,
        event_source: EventSource,
        batch_size: int = 10,
    ):
        self.provider = provider
        self.entity_id = entity_id
        self.resolver = resolver
        self.event_source = event_source
        self.batch_size = max(batch_size, 1)

    async def _read(self, selector: PointSelector, index: int, account: Optional[str] = None):
        return await self.provider.get_point_state(self.entity_id, selector, index, account=account)

    async def _read_balance(self, address: str, index: int) -> int:
        """Balance at a block; a failed read degrades to zero"""
        try:
            return int(await self._read(PointSelector.BALANCE_OF, index, account=address))
        except Exception as e:
            logger.warning(
                "Failed to get balance, treating as zero",
                address=address,
                block=index,
                error=str(e),
            )
            return 0

    async def read_balances(self, addresses: List[str], index: int) -> Dict[str, int]:
        """Read balances in batches to avoid overwhelming the provider"""
        balances: Dict[str, int] = {}
        for start in range(0, len(addresses), self.batch_size):
            batch = addresses[start:start + self.batch_size]
            values = await asyncio.gather(*(self._read_balance(a, index) for a in batch))
            balances.update(zip(batch, values))
        return balances

    async def resolve_target_index(self, as_of_index: Optional[int]) -> Tuple[int, int]:
        """Validate the requested block; returns (target block, deployment block)"""
        deployment = await self.resolver.deployment_index()
        tip = await self.resolver.get_tip()
        target = tip.index if as_of_index is None else as_of_index

        if target > tip.index:
            raise FutureIndex(target, tip.index)
        if target < deployment:
            raise BeforeOrigin(deployment, index=target)
        return target, deployment

    async def compute_snapshot(self, as_of_index: Optional[int] = None) -> LedgerSnapshot:
        """
        Generate the cap table at ``as_of_index`` (default: current tip).

        Raises:
            FutureIndex: block is after the tip
            BeforeOrigin: block is before contract deployment
            SourceUnavailable: Transfer events could not be fetched
        """
        target, deployment = await self.resolve_target_index(as_of_index)

        total_supply = int(await self._read(PointSelector.TOTAL_SUPPLY, target))
        decimals = int(await self._read(PointSelector.DECIMALS, target))
        symbol = await self._read(PointSelector.SYMBOL, target)
        timestamp = await self.resolver.timestamp_at(target)

        transfers = await self.event_source.query_events({EventKind.TRANSFER}, deployment, target)
        addresses = collect_holder_candidates(transfers)
        balances = await self.read_balances(addresses, target)

        holders = [
            HolderEntry(
                address=address,
                balance=balance,
                ownership_percentage=calculate_ownership_percentage(balance, total_supply),
            )
            for address, balance in balances.items()
            if balance > 0
        ]
        holders.sort(key=lambda h: (-h.balance, h.address.lower()))

        percentage_sum, rounding_note = calculate_percentage_sum(h.ownership_percentage for h in holders)
        balance_sum = sum(h.balance for h in holders)
        if balance_sum > total_supply:
            logger.warning(
                "Holder balances exceed total supply",
                block=target,
                total_supply=total_supply,
                sum_of_balances=balance_sum,
            )

        logger.info(
            "Cap table validation",
            block=target,
            total_supply=total_supply,
            sum_of_balances=balance_sum,
            sum_of_percentages=percentage_sum,
            holder_count=len(holders),
            candidate_count=len(addresses),
        )

        return LedgerSnapshot(
            as_of_index=target,
            timestamp=timestamp,
            total_supply=total_supply,
            holders=holders,
            symbol=symbol,
            decimals=decimals,
            rounding_note=rounding_note if holders else None,
        )
