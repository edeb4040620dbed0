"""Tests for SettlementProcessor: payouts, P&L, exactly-once closure."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from src.pm_clearing.domain.settlement import SettlementProcessor, compute_payout, position_label
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, PositionStatus
from src.pm_market.domain.models import Position
from src.pm_market.infrastructure.memory_store import InMemoryMarketStore
from tests.fakes import make_market, open_position


def _position(outcome: str, shares: str, cost: str) -> Position:
    return Position(
        id="p-1", user_address="0xa", market_id="m-1", outcome=outcome,
        shares=Decimal(shares), average_price=Decimal("0"), total_cost=Decimal(cost),
    )


class TestComputePayout:
    def test_winner_paid_per_share(self) -> None:
        payout, pnl = compute_payout(_position("yes", "40", "20"), "yes")
        assert payout == Decimal("40.00")
        assert pnl == Decimal("20.00")

    def test_loser_gets_nothing(self) -> None:
        payout, pnl = compute_payout(_position("no", "15", "15"), "yes")
        assert payout == Decimal("0.00")
        assert pnl == Decimal("-15.00")

    def test_label_matching_is_case_insensitive(self) -> None:
        payout, _ = compute_payout(_position("Yes", "10", "5"), "yes")
        assert payout == Decimal("10.00")

    def test_numeric_outcome_uses_ledger_mapping(self) -> None:
        assert position_label("0") == "yes"
        assert position_label("1") == "no"


class TestSettle:
    @pytest.mark.asyncio
    async def test_settles_every_open_position(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await open_position(store, market, user="0xa", outcome="yes", shares="40", cost="20")
        await open_position(store, market, user="0xb", outcome="no", shares="15", cost="15")
        await store.advance_status(market.id, MarketStatus.RESOLVED, 0)

        report = await SettlementProcessor(store).settle(market.id, 0)

        assert report.settled == 2
        assert report.total_payout == Decimal("40.00")
        assert report.total_realized_pnl == Decimal("5.00")
        assert await store.list_open_positions(market.id) == []
        assert (await store.get_user_stats("0xa")).total_pnl == Decimal("20.00")
        assert (await store.get_user_stats("0xb")).total_pnl == Decimal("-15.00")

    @pytest.mark.asyncio
    async def test_second_settle_changes_nothing(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await open_position(store, market)
        processor = SettlementProcessor(store)
        await processor.settle(market.id, 0)
        again = await processor.settle(market.id, 0)
        assert again.settled == 0
        assert (await store.get_user_stats("0xalice")).total_pnl == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_concurrent_settles_pay_once(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await open_position(store, market)
        processor = SettlementProcessor(store)
        reports = await asyncio.gather(processor.settle(market.id, 0), processor.settle(market.id, 0))
        assert sum(r.settled for r in reports) == 1
        assert sum(r.skipped for r in reports) == 1
        assert (await store.get_user_stats("0xalice")).total_pnl == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_already_exited_position_untouched(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market)
        await store.close_position(position.id, Decimal("5.00"), utc_now())
        report = await SettlementProcessor(store).settle(market.id, 1)
        assert report.settled == 0
        closed = await store.get_position(position.id)
        assert closed.status == PositionStatus.CLOSED
        assert closed.realized_pnl == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_unknown_outcome_index_raises(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await open_position(store, market)
        with pytest.raises(ValueError):
            await SettlementProcessor(store).settle(market.id, 5)
        assert len(await store.list_open_positions(market.id)) == 1

    @pytest.mark.asyncio
    async def test_one_failing_position_does_not_stop_the_rest(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        bad = await open_position(store, market, user="0xa")
        await open_position(store, market, user="0xb")
        real_close = store.close_position

        async def flaky_close(position_id, realized_pnl, closed_at):
            if position_id == bad.id:
                raise RuntimeError("disk full")
            return await real_close(position_id, realized_pnl, closed_at)

        store.close_position = AsyncMock(side_effect=flaky_close)  # type: ignore[method-assign]
        report = await SettlementProcessor(store).settle(market.id, 0)
        assert report.settled == 1
        assert report.failed == 1
        assert report.failed_position_ids == [bad.id]
