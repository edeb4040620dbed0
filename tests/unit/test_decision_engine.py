"""Tests for the DecisionEngine: close, decide, resolve, settle, in that order."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from src.bootstrap import AppContainer, assemble
from src.pm_common.enums import MarketStatus, PositionStatus
from src.pm_common.errors import (
    DecisionUnavailableError,
    LedgerRejectedError,
    LedgerTimeoutError,
    MalformedDecisionError,
    MarketNotEligibleError,
    MarketNotFoundError,
    OracleDisabledError,
    SweepInProgressError,
)
from src.pm_oracle.application.engine import CLOSED_ONLY, RESOLVED
from src.pm_oracle.domain.decision import ResolutionDecision
from tests.fakes import (
    FakeDecisionService,
    FakeLedger,
    make_market,
    make_settings,
    open_position,
)


def _verdict(outcome: str, confidence: float = 90) -> ResolutionDecision:
    return ResolutionDecision(outcome=outcome, confidence=confidence, reasoning="checked")


class TestResolveMarket:
    @pytest.mark.asyncio
    async def test_end_to_end_yes(self, container: AppContainer, store, ledger: FakeLedger,
                                  decisions: FakeDecisionService) -> None:
        market = await make_market(store, chain_id=7)
        await open_position(store, market, user="0xalice", outcome="yes", shares="100", cost="60")
        decisions.decision = _verdict("yes")

        report = await container.decision_engine.run_sweep()

        assert report.resolved == 1
        assert ledger.actions() == ["close", "confirm", "resolve", "confirm"]
        assert ("resolve", 7, 0) in ledger.calls
        current = await store.get_market(market.id)
        assert current.status == MarketStatus.RESOLVED
        assert current.resolved_outcome == 0
        assert current.resolution_time is not None
        position = (await store.list_positions_by_user("0xalice"))[0]
        assert position.status == PositionStatus.CLOSED
        assert position.realized_pnl == Decimal("40.00")
        assert (await store.get_user_stats("0xalice")).total_pnl == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_no_verdict_maps_to_index_one(self, container, store, ledger, decisions) -> None:
        market = await make_market(store, chain_id=7)
        decisions.decision = _verdict("no")
        result = await container.decision_engine.resolve_market(market)
        assert result.result == RESOLVED
        assert result.market.resolved_outcome == 1
        assert ("resolve", 7, 1) in ledger.calls

    @pytest.mark.asyncio
    async def test_decision_sees_market_context(self, container, store, decisions) -> None:
        market = await make_market(store, chain_id=7, question="Will it snow?")
        await container.decision_engine.resolve_market(market)
        assert len(decisions.calls) == 1
        assert decisions.calls[0].question == "Will it snow?"
        assert decisions.calls[0].category == "Weather"

    @pytest.mark.asyncio
    async def test_invalid_verdict_stops_at_closed(self, container, store, ledger, decisions) -> None:
        market = await make_market(store, chain_id=7)
        await open_position(store, market)
        decisions.decision = _verdict("invalid")

        result = await container.decision_engine.resolve_market(market)

        assert result.result == CLOSED_ONLY
        assert ledger.actions() == ["close", "confirm"]
        assert (await store.get_market(market.id)).status == MarketStatus.CLOSED
        assert len(await store.list_open_positions(market.id)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [DecisionUnavailableError("HTTP 500"), MalformedDecisionError("no JSON object")],
    )
    async def test_unusable_decision_stops_at_closed(
        self, container, store, ledger, decisions, error
    ) -> None:
        market = await make_market(store, chain_id=7)
        decisions.error = error
        result = await container.decision_engine.resolve_market(market)
        assert result.result == CLOSED_ONLY
        assert "resolve" not in ledger.actions()
        assert (await store.get_market(market.id)).status == MarketStatus.CLOSED

    @pytest.mark.asyncio
    async def test_close_failure_aborts_before_decision(self, container, store, ledger,
                                                        decisions) -> None:
        market = await make_market(store, chain_id=7)
        ledger.close_error = LedgerRejectedError("not owner")
        with pytest.raises(LedgerRejectedError):
            await container.decision_engine.resolve_market(market)
        assert decisions.calls == []
        assert (await store.get_market(market.id)).status == MarketStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unconfirmed_close_leaves_market_active(self, container, store, ledger,
                                                          decisions) -> None:
        market = await make_market(store, chain_id=7)
        ledger.confirm_error = LedgerTimeoutError("0xc0007", 120)
        with pytest.raises(LedgerTimeoutError):
            await container.decision_engine.resolve_market(market)
        assert decisions.calls == []
        assert (await store.get_market(market.id)).status == MarketStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_resolve_failure_leaves_market_closed(self, container, store, ledger) -> None:
        market = await make_market(store, chain_id=7)
        await open_position(store, market)
        ledger.resolve_error = LedgerRejectedError("already resolved")
        with pytest.raises(LedgerRejectedError):
            await container.decision_engine.resolve_market(market)
        assert (await store.get_market(market.id)).status == MarketStatus.CLOSED
        assert len(await store.list_open_positions(market.id)) == 1

    @pytest.mark.asyncio
    async def test_low_confidence_stops_at_closed(self, store, ledger, decisions) -> None:
        container = assemble(make_settings(DECISION_MIN_CONFIDENCE=80), store, ledger, decisions)
        market = await make_market(store, chain_id=7)
        decisions.decision = _verdict("yes", confidence=55)
        result = await container.decision_engine.resolve_market(market)
        assert result.result == CLOSED_ONLY
        assert "confidence" in result.reason

    @pytest.mark.asyncio
    async def test_future_market_not_eligible(self, container, store, ledger) -> None:
        market = await make_market(store, chain_id=7, closes_in=timedelta(hours=1))
        with pytest.raises(MarketNotEligibleError):
            await container.decision_engine.resolve_market(market)
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_unanchored_market_not_eligible(self, container, store) -> None:
        market = await make_market(store, chain_id=None)
        with pytest.raises(MarketNotEligibleError, match="no chain id"):
            await container.decision_engine.resolve_market(market)


class TestSweep:
    @pytest.mark.asyncio
    async def test_selects_only_expired_anchored_active(self, container, store) -> None:
        due = await make_market(store, chain_id=1)
        await make_market(store, chain_id=2, closes_in=timedelta(days=1))
        await make_market(store, chain_id=None)
        closed = await make_market(store, chain_id=3)
        await store.advance_status(closed.id, MarketStatus.CLOSED)

        eligible = await container.decision_engine.eligible_markets()

        assert [m.id for m in eligible] == [due.id]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self, container, store, ledger) -> None:
        await make_market(store, chain_id=1)
        await make_market(store, chain_id=2)
        calls = {"n": 0}
        real_close = ledger.submit_close

        async def close_first_fails(chain_id: int):
            calls["n"] += 1
            if calls["n"] == 1:
                raise LedgerRejectedError("nonce too low")
            return await real_close(chain_id)

        ledger.submit_close = close_first_fails  # type: ignore[method-assign]
        report = await container.decision_engine.run_sweep()
        assert report.eligible == 2
        assert report.failed == 1
        assert report.resolved == 1

    @pytest.mark.asyncio
    async def test_disabled_without_signer(self, store, decisions) -> None:
        ledger = FakeLedger(can_submit=False)
        container = assemble(make_settings(), store, ledger, decisions)
        await make_market(store, chain_id=1)
        report = await container.decision_engine.run_sweep()
        assert report.disabled
        assert ledger.calls == []
        with pytest.raises(OracleDisabledError):
            await container.decision_engine.resolve_now("anything")

    @pytest.mark.asyncio
    async def test_overlapping_sweep_is_skipped(self, container, store, decisions) -> None:
        await make_market(store, chain_id=1)
        gate = asyncio.Event()
        real_decide = decisions.decide

        async def slow_decide(context):
            await gate.wait()
            return await real_decide(context)

        decisions.decide = slow_decide  # type: ignore[method-assign]
        engine = container.decision_engine
        first = asyncio.create_task(engine.run_sweep())
        await asyncio.sleep(0.01)

        assert engine.sweep_running
        assert await engine.run_sweep() is None
        with pytest.raises(SweepInProgressError):
            await engine.resolve_now("whatever")

        gate.set()
        report = await first
        assert report.resolved == 1


class TestResolveNow:
    @pytest.mark.asyncio
    async def test_accepts_closed_market(self, container, store, ledger) -> None:
        market = await make_market(store, chain_id=7)
        await store.advance_status(market.id, MarketStatus.CLOSED)
        result = await container.decision_engine.resolve_now(market.id)
        assert result.result == RESOLVED
        # close already happened; only the resolve is submitted
        assert ledger.actions() == ["resolve", "confirm"]

    @pytest.mark.asyncio
    async def test_unknown_market(self, container) -> None:
        with pytest.raises(MarketNotFoundError):
            await container.decision_engine.resolve_now("nope")

    @pytest.mark.asyncio
    async def test_terminal_market_not_eligible(self, container, store) -> None:
        market = await make_market(store, chain_id=7)
        await store.advance_status(market.id, MarketStatus.INVALID)
        with pytest.raises(MarketNotEligibleError):
            await container.decision_engine.resolve_now(market.id)


class TestConcurrentSweeps:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reconcile_first", [True, False])
    async def test_reconciliation_and_resolution_interleaved(
        self, store, decisions, reconcile_first: bool
    ) -> None:
        ledger = FakeLedger(interleave=True)
        container = assemble(make_settings(), store, ledger, decisions)
        decisions.decision = _verdict("yes")

        # expired: the resolution sweep closes and resolves it
        swept = await make_market(store, chain_id=7)
        ledger.put(7)
        await open_position(store, swept, user="0xalice", outcome="yes", shares="100", cost="60")
        await open_position(store, swept, user="0xbob", outcome="no", shares="50", cost="20")
        # still open locally, already resolved NO on-chain: only reconciliation touches it
        synced = await make_market(store, chain_id=8, closes_in=timedelta(days=1))
        ledger.put(8, MarketStatus.RESOLVED, resolved_outcome=1)
        await open_position(store, synced, user="0xcarol", outcome="no", shares="30", cost="12")
        await open_position(store, synced, user="0xdave", outcome="yes", shares="10", cost="6")

        sweeps = [container.reconciler.sync_all(), container.decision_engine.run_sweep()]
        if not reconcile_first:
            sweeps.reverse()
        results = await asyncio.gather(*sweeps)
        reconcile_report, resolution_report = results if reconcile_first else results[::-1]

        assert reconcile_report.failed == 0
        assert resolution_report.resolved == 1
        assert resolution_report.failed == 0
        assert not any(call[0] != "read" and call[-1] == 8 for call in ledger.calls)

        first = await store.get_market(swept.id)
        assert (first.status, first.resolved_outcome) == (MarketStatus.RESOLVED, 0)
        second = await store.get_market(synced.id)
        assert (second.status, second.resolved_outcome) == (MarketStatus.RESOLVED, 1)

        expected = {
            "0xalice": Decimal("40.00"),
            "0xbob": Decimal("-20.00"),
            "0xcarol": Decimal("18.00"),
            "0xdave": Decimal("-6.00"),
        }
        for user, pnl in expected.items():
            positions = await store.list_positions_by_user(user)
            assert [p.status for p in positions] == [PositionStatus.CLOSED]
            assert positions[0].realized_pnl == pnl
            # credited exactly once, whichever path settled the market
            assert (await store.get_user_stats(user)).total_pnl == pnl
