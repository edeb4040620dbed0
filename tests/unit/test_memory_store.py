"""Tests for InMemoryMarketStore, including interleaved concurrent callers."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, PositionStatus
from src.pm_common.errors import ChainIdConflictError, MarketNotActiveError, MarketNotFoundError
from src.pm_market.domain.models import NewMarket
from src.pm_market.infrastructure.memory_store import InMemoryMarketStore
from tests.fakes import make_market, open_position


class TestMarkets:
    @pytest.mark.asyncio
    async def test_create_and_lookup_by_chain_id(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store, chain_id=7)
        assert market.status == MarketStatus.ACTIVE
        assert market.outcomes == ["Yes", "No"]
        assert (await store.get_market_by_chain_id(7)).id == market.id
        assert await store.get_market_by_chain_id(8) is None

    @pytest.mark.asyncio
    async def test_duplicate_chain_id_rejected(self, store: InMemoryMarketStore) -> None:
        await make_market(store, chain_id=7)
        with pytest.raises(ChainIdConflictError):
            await make_market(store, chain_id=7)

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        market.status = MarketStatus.INVALID
        assert (await store.get_market(market.id)).status == MarketStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_outcomes_list_is_not_shared(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        market.outcomes.append("Maybe")
        (await store.get_market(market.id)).outcomes.clear()
        (await store.list_markets())[0].outcomes.append("Later")
        change = await store.advance_status(market.id, MarketStatus.CLOSED)
        change.market.outcomes.pop()
        assert (await store.get_market(market.id)).outcomes == ["Yes", "No"]

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, store: InMemoryMarketStore) -> None:
        a = await make_market(store, chain_id=1)
        b = await make_market(store, chain_id=2)
        await store.advance_status(b.id, MarketStatus.CLOSED)
        active = await store.list_markets([MarketStatus.ACTIVE])
        assert [m.id for m in active] == [a.id]
        assert len(await store.list_markets()) == 2

    @pytest.mark.asyncio
    async def test_anchor_chain_id_once(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store, chain_id=None)
        anchored = await store.anchor_chain_id(market.id, 11)
        assert anchored.chain_id == 11
        # idempotent for the same id
        assert (await store.anchor_chain_id(market.id, 11)).chain_id == 11
        with pytest.raises(ChainIdConflictError):
            await store.anchor_chain_id(market.id, 12)

    @pytest.mark.asyncio
    async def test_anchor_chain_id_taken_by_other_market(self, store: InMemoryMarketStore) -> None:
        await make_market(store, chain_id=11)
        other = await make_market(store, chain_id=None)
        with pytest.raises(ChainIdConflictError):
            await store.anchor_chain_id(other.id, 11)

    @pytest.mark.asyncio
    async def test_anchor_unknown_market(self, store: InMemoryMarketStore) -> None:
        with pytest.raises(MarketNotFoundError):
            await store.anchor_chain_id("nope", 1)


class TestAdvanceStatus:
    @pytest.mark.asyncio
    async def test_forward_only(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        change = await store.advance_status(market.id, MarketStatus.CLOSED)
        assert change.advanced and change.previous == MarketStatus.ACTIVE
        assert change.market.resolution_time is None

        back = await store.advance_status(market.id, MarketStatus.ACTIVE)
        assert not back.advanced
        assert back.market.status == MarketStatus.CLOSED

    @pytest.mark.asyncio
    async def test_resolved_records_outcome_and_time(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        when = utc_now()
        change = await store.advance_status(market.id, MarketStatus.RESOLVED, 1, when)
        assert change.entered_resolved
        assert change.market.resolved_outcome == 1
        assert change.market.resolution_time == when

    @pytest.mark.asyncio
    async def test_terminal_is_final(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await store.advance_status(market.id, MarketStatus.INVALID)
        change = await store.advance_status(market.id, MarketStatus.RESOLVED, 0)
        assert not change.advanced
        assert change.market.status == MarketStatus.INVALID
        assert change.market.resolved_outcome is None

    @pytest.mark.asyncio
    async def test_unknown_market(self, store: InMemoryMarketStore) -> None:
        with pytest.raises(MarketNotFoundError):
            await store.advance_status("nope", MarketStatus.CLOSED)

    @pytest.mark.asyncio
    async def test_concurrent_resolves_enter_resolved_once(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        changes = await asyncio.gather(
            *(store.advance_status(market.id, MarketStatus.RESOLVED, 0) for _ in range(5))
        )
        assert sum(c.entered_resolved for c in changes) == 1

    @pytest.mark.asyncio
    async def test_close_and_resolve_race_never_regresses(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await asyncio.gather(
            store.advance_status(market.id, MarketStatus.RESOLVED, 1),
            store.advance_status(market.id, MarketStatus.CLOSED),
        )
        final = await store.get_market(market.id)
        assert final.status == MarketStatus.RESOLVED
        assert final.resolved_outcome == 1


class TestTrades:
    @pytest.mark.asyncio
    async def test_first_trade_opens_position(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market, shares="100", cost="60")
        assert position.status == PositionStatus.OPEN
        assert position.average_price == Decimal("0.6000")
        stats = await store.get_user_stats("0xalice")
        assert stats.total_volume == Decimal("60")
        assert stats.markets_traded == 1

    @pytest.mark.asyncio
    async def test_second_trade_merges_with_weighted_price(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        first = await open_position(store, market, shares="100", cost="60")
        merged = await open_position(store, market, shares="50", cost="45")
        assert merged.id == first.id
        assert merged.shares == Decimal("150")
        assert merged.total_cost == Decimal("105")
        assert merged.average_price == Decimal("0.7000")
        assert (await store.get_user_stats("0xalice")).markets_traded == 1

    @pytest.mark.asyncio
    async def test_different_outcome_is_separate_position(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        yes = await open_position(store, market, outcome="yes")
        no = await open_position(store, market, outcome="no")
        assert yes.id != no.id
        assert len(await store.list_open_positions(market.id)) == 2

    @pytest.mark.asyncio
    async def test_trade_rejected_once_market_closed(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await store.advance_status(market.id, MarketStatus.CLOSED)
        with pytest.raises(MarketNotActiveError):
            await open_position(store, market)

    @pytest.mark.asyncio
    async def test_trade_on_unknown_market(self, store: InMemoryMarketStore) -> None:
        with pytest.raises(MarketNotFoundError):
            await store.apply_trade("0xa", "nope", "yes", Decimal("1"), Decimal("1"))

    @pytest.mark.asyncio
    async def test_concurrent_trades_merge_into_one_position(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await asyncio.gather(*(open_position(store, market, shares="10", cost="5") for _ in range(10)))
        positions = await store.list_open_positions(market.id)
        assert len(positions) == 1
        assert positions[0].shares == Decimal("100")
        assert positions[0].total_cost == Decimal("50")


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_close_is_exactly_once(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market)
        results = await asyncio.gather(
            *(store.close_position(position.id, Decimal("40"), utc_now()) for _ in range(5))
        )
        assert sum(r is not None for r in results) == 1
        assert (await store.get_user_stats("0xalice")).total_pnl == Decimal("40")

    @pytest.mark.asyncio
    async def test_closed_position_has_zero_unrealized(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market)
        closed = await store.close_position(position.id, Decimal("-60"), utc_now())
        assert closed.status == PositionStatus.CLOSED
        assert closed.unrealized_pnl == Decimal("0")
        assert closed.closed_at is not None

    @pytest.mark.asyncio
    async def test_trade_after_close_opens_fresh_position(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        first = await open_position(store, market)
        await store.close_position(first.id, Decimal("0"), utc_now())
        second = await open_position(store, market)
        assert second.id != first.id
        assert (await store.get_user_stats("0xalice")).markets_traded == 2

    @pytest.mark.asyncio
    async def test_exit_computes_pnl_from_current_cost(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market, shares="100", cost="60")
        closed = await store.exit_position(position.id, Decimal("75"), utc_now())
        assert closed.realized_pnl == Decimal("15.00")
        assert await store.exit_position(position.id, Decimal("75"), utc_now()) is None
        assert await store.exit_position("nope", Decimal("1"), utc_now()) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [MarketStatus.CLOSED, MarketStatus.INVALID])
    async def test_exit_requires_active_market(self, store: InMemoryMarketStore, status) -> None:
        market = await make_market(store)
        position = await open_position(store, market)
        await store.advance_status(market.id, status)
        with pytest.raises(MarketNotActiveError):
            await store.exit_position(position.id, Decimal("100"), utc_now())
        assert (await store.get_position(position.id)).status == PositionStatus.OPEN

    @pytest.mark.asyncio
    async def test_exit_racing_resolution_closes_once(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        position = await open_position(store, market, outcome="no", shares="15", cost="15")
        exit_result, change = await asyncio.gather(
            store.exit_position(position.id, Decimal("15"), utc_now()),
            store.advance_status(market.id, MarketStatus.RESOLVED, 0),
            return_exceptions=True,
        )
        assert change.advanced
        current = await store.get_position(position.id)
        if isinstance(exit_result, MarketNotActiveError):
            # resolution won the market lock; the position waits for settlement
            assert current.status == PositionStatus.OPEN
        else:
            assert current.status == PositionStatus.CLOSED
            assert current.realized_pnl == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_resolved_with_open_positions(self, store: InMemoryMarketStore) -> None:
        market = await make_market(store)
        await open_position(store, market)
        await store.advance_status(market.id, MarketStatus.RESOLVED, 0)
        stragglers = await store.list_resolved_with_open_positions()
        assert [m.id for m in stragglers] == [market.id]


@pytest.mark.asyncio
async def test_future_market_roundtrip() -> None:
    store = InMemoryMarketStore()
    closing = utc_now() + timedelta(days=3)
    market = await store.create_market(
        NewMarket(question="Q?", category="Crypto", closing_time=closing, outcomes=["Up", "Down"])
    )
    assert market.closing_time == closing
    assert market.outcomes == ["Up", "Down"]
    assert market.chain_id is None
