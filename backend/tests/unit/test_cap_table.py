"""Unit tests for cap table reconstruction"""
import pytest

from tokenledger.exceptions import BeforeOrigin, FutureIndex, SourceUnavailable
from tokenledger.models.events import ZERO_ADDRESS
from tokenledger.services.cap_table import (
    ROUNDING_NOTE,
    calculate_ownership_percentage,
    calculate_percentage_sum,
    collect_holder_candidates,
)
from tokenledger.services.ledger_session import LedgerSession

from conftest import (
    ALICE,
    BOB,
    CAROL,
    DEPLOY_BLOCK,
    TIP_BLOCK,
    TOKEN,
    burn,
    make_scenario_provider,
    mint,
    no_sleep,
    scenario_timestamp,
    transfer,
)


class TestOwnershipPercentage:
    """Tests for fixed-point percentage math"""

    def test_sole_holder(self):
        assert calculate_ownership_percentage(1000, 1000) == "100.000000"

    def test_even_split(self):
        assert calculate_ownership_percentage(500, 1000) == "50.000000"

    def test_truncates_not_rounds(self):
        """Test that the sixth decimal is truncated"""
        assert calculate_ownership_percentage(1, 3) == "33.333333"
        assert calculate_ownership_percentage(2, 3) == "66.666666"

    def test_zero_supply(self):
        assert calculate_ownership_percentage(0, 0) == "0.000000"

    def test_large_values(self):
        """Test uint256-scale balances without float precision loss"""
        supply = 10 ** 30
        assert calculate_ownership_percentage(supply // 4, supply) == "25.000000"

    def test_percentage_sum_exact(self):
        assert calculate_percentage_sum(["60.000000", "40.000000"]) == ("100.000000", None)

    def test_percentage_sum_rounding_note(self):
        """Test that truncation shortfall is reported, never corrected"""
        total, note = calculate_percentage_sum(["33.333333", "33.333333", "33.333333"])
        assert total == "99.999999"
        assert note == ROUNDING_NOTE

    def test_percentage_sum_empty(self):
        assert calculate_percentage_sum([]) == ("0.000000", None)


class TestHolderCandidates:
    """Tests for holder discovery from Transfer events"""

    def test_excludes_zero_address_and_dedupes(self):
        events = [
            mint(101, ALICE, 10),
            transfer(102, ALICE, BOB, 5),
            transfer(103, BOB.upper().replace("0X", "0x"), ALICE, 1),
            burn(104, BOB, 1),
        ]
        candidates = collect_holder_candidates(events)
        assert candidates == [ALICE, BOB]
        assert ZERO_ADDRESS not in candidates


class TestComputeSnapshot:
    """Tests for the ledger aggregator"""

    @pytest.mark.asyncio
    async def test_after_split(self, ledger_session):
        """Test cap table after a 7-for-1 split"""
        snapshot = await ledger_session.get_snapshot(110)

        assert snapshot.total_supply == 7000
        assert [(h.address, h.balance, h.ownership_percentage) for h in snapshot.holders] == [
            (ALICE, 4200, "60.000000"),
            (BOB, 2800, "40.000000"),
        ]
        assert snapshot.rounding_note is None
        assert snapshot.timestamp == scenario_timestamp(110)

    @pytest.mark.asyncio
    async def test_before_split(self, ledger_session):
        """Test cap table right after the transfer"""
        snapshot = await ledger_session.get_snapshot(105)

        assert snapshot.total_supply == 1000
        assert [(h.address, h.balance, h.ownership_percentage) for h in snapshot.holders] == [
            (ALICE, 600, "60.000000"),
            (BOB, 400, "40.000000"),
        ]

    @pytest.mark.asyncio
    async def test_sole_holder(self, ledger_session):
        """Test a single holder owning everything"""
        snapshot = await ledger_session.get_snapshot(104)
        assert snapshot.holder_count == 1
        assert snapshot.holders[0].ownership_percentage == "100.000000"

    @pytest.mark.asyncio
    async def test_defaults_to_tip(self, ledger_session):
        snapshot = await ledger_session.get_snapshot()
        assert snapshot.as_of_index == TIP_BLOCK
        assert snapshot.total_supply == 7000
        assert snapshot.symbol == "CEQ"

    @pytest.mark.asyncio
    async def test_empty_at_deployment(self, ledger_session):
        """Test that no holders exist before the first mint"""
        snapshot = await ledger_session.get_snapshot(DEPLOY_BLOCK)
        assert snapshot.total_supply == 0
        assert snapshot.holders == []
        assert snapshot.rounding_note is None

    @pytest.mark.asyncio
    async def test_conservation(self, ledger_session):
        """Test that holder balances never exceed total supply"""
        for block in range(DEPLOY_BLOCK, TIP_BLOCK + 1):
            snapshot = await ledger_session.get_snapshot(block)
            assert sum(h.balance for h in snapshot.holders) <= snapshot.total_supply

    @pytest.mark.asyncio
    async def test_zero_balances_omitted(self, test_settings, retry_policy):
        """Test that holders who sent everything away are not listed"""
        provider = make_scenario_provider([transfer(112, BOB, CAROL, 2800)])
        session = LedgerSession(provider, TOKEN, test_settings, policy=retry_policy, sleep=no_sleep)

        snapshot = await session.get_snapshot(115)
        assert [h.address for h in snapshot.holders] == [ALICE, CAROL]

    @pytest.mark.asyncio
    async def test_burn_reduces_supply(self, test_settings, retry_policy):
        provider = make_scenario_provider([burn(113, ALICE, 700)])
        session = LedgerSession(provider, TOKEN, test_settings, policy=retry_policy, sleep=no_sleep)

        snapshot = await session.get_snapshot(TIP_BLOCK)
        assert snapshot.total_supply == 6300
        assert [(h.address, h.balance) for h in snapshot.holders] == [(ALICE, 3500), (BOB, 2800)]

    @pytest.mark.asyncio
    async def test_rounding_note_attached(self, test_settings, retry_policy):
        """Test that an inexact percentage sum carries the rounding note"""
        provider = make_scenario_provider([
            mint(111, CAROL, 7000),
            transfer(112, ALICE, CAROL, 1400),
        ])
        session = LedgerSession(provider, TOKEN, test_settings, policy=retry_policy, sleep=no_sleep)

        snapshot = await session.get_snapshot(TIP_BLOCK)
        balances = {h.address: h.balance for h in snapshot.holders}
        assert balances == {CAROL: 8400, BOB: 2800, ALICE: 2800}
        assert snapshot.holders[0].address == CAROL
        # Ties are ordered by address
        assert [h.address for h in snapshot.holders[1:]] == [ALICE, BOB]
        percentages = [h.ownership_percentage for h in snapshot.holders]
        assert percentages == ["60.000000", "20.000000", "20.000000"]
        assert snapshot.rounding_note is None

        provider = make_scenario_provider([mint(111, CAROL, 3500)])
        session = LedgerSession(provider, TOKEN, test_settings, policy=retry_policy, sleep=no_sleep)
        snapshot = await session.get_snapshot(TIP_BLOCK)
        # 4200 / 2800 / 3500 of 10500
        assert [h.ownership_percentage for h in snapshot.holders] == [
            "40.000000", "33.333333", "26.666666",
        ]
        assert snapshot.rounding_note == ROUNDING_NOTE

    @pytest.mark.asyncio
    async def test_future_block_rejected(self, ledger_session):
        with pytest.raises(FutureIndex):
            await ledger_session.get_snapshot(TIP_BLOCK + 1)

    @pytest.mark.asyncio
    async def test_block_before_deployment_rejected(self, ledger_session):
        with pytest.raises(BeforeOrigin):
            await ledger_session.get_snapshot(DEPLOY_BLOCK - 1)

    @pytest.mark.asyncio
    async def test_failed_balance_read_degrades_to_zero(self, ledger_session, scenario_provider):
        """Test that one failing balance read does not abort the snapshot"""
        scenario_provider.balance_failures[BOB] = ConnectionError("reset")
        snapshot = await ledger_session.get_snapshot(110)
        assert [h.address for h in snapshot.holders] == [ALICE]
        assert snapshot.total_supply == 7000

    @pytest.mark.asyncio
    async def test_event_failure_aborts(self, ledger_session, scenario_provider):
        """Test that a failed holder discovery is not silently partial"""
        scenario_provider.query_failures = [ConnectionError("reset")] * 3
        with pytest.raises(SourceUnavailable):
            await ledger_session.get_snapshot(110)

    @pytest.mark.asyncio
    async def test_not_cached_across_calls(self, ledger_session, scenario_provider):
        """Test that every snapshot re-reads the ledger"""
        await ledger_session.get_snapshot(110)
        calls = len(scenario_provider.query_calls)
        await ledger_session.get_snapshot(110)
        assert len(scenario_provider.query_calls) == calls * 2
