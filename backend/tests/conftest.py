"""Pytest configuration and fixtures for Token Ledger tests"""
from typing import AsyncGenerator, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient

from tokenledger.api.deps import get_ledger_session
from tokenledger.config import Settings
from tokenledger.main import app
from tokenledger.models.events import (
    ZERO_ADDRESS,
    AllowlistUpdatePayload,
    IndexedRecord,
    LedgerEvent,
    SplitPayload,
    SymbolChangePayload,
    TransferPayload,
)
from tokenledger.services.ledger_session import LedgerSession
from tokenledger.services.provider import PointSelector
from tokenledger.services.retry import RetryPolicy
from tokenledger.services.session_cache import SessionCache

# Load environment variables
load_dotenv()

TOKEN = "0x" + "c" * 40
ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "d" * 40

GENESIS_TIME = 1_700_000_000
BLOCK_TIME = 12
# Blocks 106+ are mined after a stall, so no block exists between
# the wall-clock times of "block 106" and "block 107" of a regular chain
STALL = 1_000
DEPLOY_BLOCK = 100
TIP_BLOCK = 120


def scenario_timestamp(index: int) -> int:
    timestamp = GENESIS_TIME + index * BLOCK_TIME
    return timestamp + STALL if index >= 106 else timestamp


def tx_hash(index: int, log_index: int) -> str:
    return f"0x{index:060x}{log_index:04x}"


def transfer(index: int, sender: str, recipient: str, amount: int, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        payload=TransferPayload(from_address=sender, to_address=recipient, amount=amount),
        transaction_id=tx_hash(index, log_index),
        index=index,
        log_index=log_index,
    )


def mint(index: int, recipient: str, amount: int, log_index: int = 0) -> LedgerEvent:
    return transfer(index, ZERO_ADDRESS, recipient, amount, log_index)


def burn(index: int, sender: str, amount: int, log_index: int = 0) -> LedgerEvent:
    return transfer(index, sender, ZERO_ADDRESS, amount, log_index)


def split(index: int, factor: int, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        payload=SplitPayload(new_multiplier=factor, at_index=index),
        transaction_id=tx_hash(index, log_index),
        index=index,
        log_index=log_index,
    )


def symbol_change(index: int, old: str, new: str, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        payload=SymbolChangePayload(old_symbol=old, new_symbol=new),
        transaction_id=tx_hash(index, log_index),
        index=index,
        log_index=log_index,
    )


def allowlist_update(index: int, account: str, approved: bool = True, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        payload=AllowlistUpdatePayload(account=account, approved=approved),
        transaction_id=tx_hash(index, log_index),
        index=index,
        log_index=log_index,
    )


class FakeLedgerProvider:
    """
    In-memory ledger built from a synthetic event log.

    Point reads are derived by replaying the log up to the requested block.
    Transfers move ``amount // multiplier`` base units and balances are
    reported as base units times the cumulative split multiplier.
    """

    def __init__(
        self,
        timestamps: List[int],
        deploy_index: int,
        events: Iterable[LedgerEvent] = (),
        entity_id: str = TOKEN,
        symbol: str = "CEQ",
        decimals: int = 0,
    ):
        self.timestamps = list(timestamps)
        self.deploy_index = deploy_index
        self.events = sorted(events, key=lambda e: e.sort_key)
        self.entity_id = entity_id
        self.initial_symbol = symbol
        self.decimals = decimals

        self.query_calls: List[tuple] = []
        self.record_calls: List[int] = []
        self.existence_calls: List[int] = []
        self.query_failures: List[Exception] = []
        self.balance_failures: Dict[str, Exception] = {}

    @property
    def tip_index(self) -> int:
        return len(self.timestamps) - 1

    async def get_tip(self) -> IndexedRecord:
        return IndexedRecord(index=self.tip_index, timestamp=self.timestamps[-1])

    async def get_record_at(self, index: int) -> IndexedRecord:
        self.record_calls.append(index)
        if index < 0 or index > self.tip_index:
            raise LookupError(f"Failed to get block data for block {index}")
        return IndexedRecord(index=index, timestamp=self.timestamps[index])

    async def get_entity_existence(self, entity_id: str, index: int) -> bool:
        self.existence_calls.append(index)
        return entity_id.lower() == self.entity_id.lower() and index >= self.deploy_index

    def _replay(self, index: int) -> dict:
        balances: Dict[str, int] = {}
        supply = 0
        multiplier = 1
        symbol = self.initial_symbol
        for event in self.events:
            if event.index > index:
                break
            payload = event.payload
            if isinstance(payload, TransferPayload):
                units = payload.amount // multiplier
                sender = payload.from_address.lower()
                recipient = payload.to_address.lower()
                if sender == ZERO_ADDRESS:
                    supply += units
                else:
                    balances[sender] = balances.get(sender, 0) - units
                if recipient == ZERO_ADDRESS:
                    supply -= units
                else:
                    balances[recipient] = balances.get(recipient, 0) + units
            elif isinstance(payload, SplitPayload):
                multiplier *= payload.new_multiplier
            elif isinstance(payload, SymbolChangePayload):
                symbol = payload.new_symbol
        return {"balances": balances, "supply": supply, "multiplier": multiplier, "symbol": symbol}

    async def get_point_state(
        self,
        entity_id: str,
        selector: PointSelector,
        index: int,
        account: Optional[str] = None,
    ):
        if index < self.deploy_index:
            raise ValueError(f"No contract code at block {index}")
        state = self._replay(index)
        if selector == PointSelector.BALANCE_OF:
            failure = self.balance_failures.get(account.lower())
            if failure is not None:
                raise failure
            return state["balances"].get(account.lower(), 0) * state["multiplier"]
        if selector == PointSelector.TOTAL_SUPPLY:
            return state["supply"] * state["multiplier"]
        if selector == PointSelector.MULTIPLIER:
            return state["multiplier"]
        if selector == PointSelector.SYMBOL:
            return state["symbol"]
        if selector == PointSelector.DECIMALS:
            return self.decimals
        raise ValueError(f"Unknown selector: {selector}")

    async def query_events(self, entity_id, kinds, from_index, to_index) -> List[LedgerEvent]:
        kinds = set(kinds)
        self.query_calls.append((frozenset(kinds), from_index, to_index))
        if self.query_failures:
            raise self.query_failures.pop(0)
        return [
            e for e in self.events
            if e.kind in kinds and from_index <= e.index <= to_index
        ]


def scenario_events() -> List[LedgerEvent]:
    """Mint 1000 to Alice at 101, Alice sends 400 to Bob at 105, 7-for-1 split at 110"""
    return [
        mint(101, ALICE, 1000),
        transfer(105, ALICE, BOB, 400),
        split(110, 7),
    ]


def make_scenario_provider(extra_events: Iterable[LedgerEvent] = ()) -> FakeLedgerProvider:
    timestamps = [scenario_timestamp(i) for i in range(TIP_BLOCK + 1)]
    return FakeLedgerProvider(timestamps, DEPLOY_BLOCK, [*scenario_events(), *extra_events])


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        token_address=TOKEN,
        retry_max_attempts=3,
        retry_base_delay=0.0,
        estimated_events_per_index=10,
        default_page_size=50,
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def session_cache() -> SessionCache:
    """Fresh session cache per test"""
    return SessionCache()


@pytest.fixture
def scenario_provider() -> FakeLedgerProvider:
    return make_scenario_provider()


@pytest.fixture
def ledger_session(scenario_provider, test_settings, retry_policy) -> LedgerSession:
    return LedgerSession(scenario_provider, TOKEN, test_settings, policy=retry_policy, sleep=no_sleep)


@pytest_asyncio.fixture(scope="function")
async def client(ledger_session: LedgerSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client backed by the scenario ledger"""
    app.dependency_overrides[get_ledger_session] = lambda: ledger_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
