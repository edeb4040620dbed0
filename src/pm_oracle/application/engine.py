"""DecisionEngine — automated close + resolve for markets past closing time.

Per market, strictly in this order:

1. close on-chain and wait (bounded) for confirmation; failure aborts
2. ask the decision service once; unparseable reply => stop at closed
3. verdict `invalid` (or below the confidence floor) => stop at closed
4. verdict yes/no => resolve on-chain, confirm, mark resolved, settle

A market left closed is the safe default: nothing is paid out until the
ledger itself says resolved. Markets in a sweep are processed one at a
time because every transaction comes from the same signing identity.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from src.pm_clearing.domain.settlement import SettlementProcessor, SettlementReport
from src.pm_common.datetime_utils import ensure_utc, utc_now
from src.pm_common.enums import DecisionOutcome, MarketStatus, outcome_index
from src.pm_common.errors import (
    DecisionError,
    MarketNotEligibleError,
    MarketNotFoundError,
    OracleDisabledError,
)
from src.pm_ledger.domain.client import LedgerClientProtocol
from src.pm_market.domain.models import Market
from src.pm_market.domain.repository import MarketStoreProtocol
from src.pm_oracle.domain.decision import (
    DecisionContext,
    DecisionServiceProtocol,
    ResolutionDecision,
)
from src.pm_scheduler.guards import SweepGuard

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
CLOSED_ONLY = "closed_only"


@dataclass
class ResolutionResult:
    market: Market
    result: str  # RESOLVED | CLOSED_ONLY
    reason: str | None = None
    decision: ResolutionDecision | None = None
    settlement: SettlementReport | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "market_id": self.market.id,
            "status": self.market.status.value,
            "resolved_outcome": self.market.resolved_outcome,
            "result": self.result,
            "reason": self.reason,
            "decision": self.decision.model_dump(mode="json") if self.decision else None,
            "settlement": self.settlement.as_dict() if self.settlement else None,
        }


@dataclass
class ResolutionSweepReport:
    eligible: int = 0
    resolved: int = 0
    closed_only: int = 0
    failed: int = 0
    disabled: bool = False
    failed_market_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "eligible": self.eligible,
            "resolved": self.resolved,
            "closed_only": self.closed_only,
            "failed": self.failed,
            "disabled": self.disabled,
        }


class DecisionEngine:
    def __init__(
        self,
        store: MarketStoreProtocol,
        ledger: LedgerClientProtocol,
        decision_service: DecisionServiceProtocol,
        settlement: SettlementProcessor,
        guard: SweepGuard,
        *,
        confirm_timeout: float = 120.0,
        market_delay: float = 0.0,
        min_confidence: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._decisions = decision_service
        self._settlement = settlement
        self._guard = guard
        self._confirm_timeout = confirm_timeout
        self._market_delay = market_delay
        self._min_confidence = min_confidence
        self._clock = clock

    @property
    def decision_service_configured(self) -> bool:
        return self._decisions.configured

    @property
    def signer_configured(self) -> bool:
        return self._ledger.can_submit

    @property
    def enabled(self) -> bool:
        return self.decision_service_configured and self.signer_configured

    @property
    def sweep_running(self) -> bool:
        return self._guard.running

    async def eligible_markets(self) -> list[Market]:
        now = self._clock()
        return [
            m for m in await self._store.list_markets([MarketStatus.ACTIVE])
            if m.chain_id is not None and ensure_utc(m.closing_time) < now
        ]

    # -- sweeps -------------------------------------------------------------

    async def run_sweep(self) -> ResolutionSweepReport | None:
        """Scheduled entry point; None when the previous sweep is still running."""
        return await self._guard.run_exclusive(self._sweep)

    async def resolve_now(self, market_id: str) -> ResolutionResult:
        """Out-of-band resolution for one market, serialized with the sweep."""
        if not self.enabled:
            raise OracleDisabledError(self._disabled_reason())
        async with self._guard.hold():
            market = await self._store.get_market(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            return await self.resolve_market(market, allow_closed=True)

    async def _sweep(self) -> ResolutionSweepReport:
        report = ResolutionSweepReport()
        if not self.enabled:
            logger.info("Oracle disabled (%s), skipping resolution sweep", self._disabled_reason())
            report.disabled = True
            return report

        markets = await self.eligible_markets()
        report.eligible = len(markets)
        if not markets:
            logger.info("No markets need resolution at this time")
            return report
        logger.info("Found %d market(s) ready for resolution", len(markets))

        for i, market in enumerate(markets):
            if i and self._market_delay:
                await asyncio.sleep(self._market_delay)
            try:
                result = await self.resolve_market(market)
            except Exception:
                logger.exception("Failed to resolve market %s (chain_id=%s)", market.id, market.chain_id)
                report.failed += 1
                report.failed_market_ids.append(market.id)
                continue
            if result.result == RESOLVED:
                report.resolved += 1
            else:
                report.closed_only += 1

        logger.info(
            "Resolution sweep: %d eligible, %d resolved, %d closed only, %d failed",
            report.eligible, report.resolved, report.closed_only, report.failed,
        )
        return report

    # -- single market ------------------------------------------------------

    async def resolve_market(self, market: Market, *, allow_closed: bool = False) -> ResolutionResult:
        chain_id = self._check_eligible(market, allow_closed)
        logger.info("Resolving market %s (chain_id=%d): %r", market.id, chain_id, market.question)

        # Step 1: stop trading on-chain
        if market.status == MarketStatus.ACTIVE:
            tx = await self._ledger.submit_close(chain_id)
            await self._ledger.wait_for_confirmation(tx, self._confirm_timeout)
            market = (await self._store.advance_status(market.id, MarketStatus.CLOSED)).market

        # Step 2: one call to the decision service
        context = DecisionContext.for_market(market, self._clock().date())
        try:
            decision = await self._decisions.decide(context)
        except DecisionError as e:
            logger.warning("No usable decision for market %s: %s", market.id, e.message)
            return ResolutionResult(market=market, result=CLOSED_ONLY, reason=e.message)

        logger.info(
            "Decision for market %s: %s (confidence %.0f%%): %s",
            market.id, decision.outcome.value.upper(), decision.confidence, decision.reasoning,
        )

        # Step 3: conservative stop
        if decision.outcome == DecisionOutcome.INVALID:
            return ResolutionResult(
                market=market, result=CLOSED_ONLY, reason="decision: invalid", decision=decision
            )
        if decision.confidence < self._min_confidence:
            return ResolutionResult(
                market=market,
                result=CLOSED_ONLY,
                reason=f"confidence {decision.confidence:g} below {self._min_confidence:g}",
                decision=decision,
            )

        # Step 4: resolve on-chain, then locally
        index = outcome_index(decision.outcome.value)
        tx = await self._ledger.submit_resolve(chain_id, index)
        await self._ledger.wait_for_confirmation(tx, self._confirm_timeout)
        change = await self._store.advance_status(
            market.id, MarketStatus.RESOLVED, resolved_outcome=index, resolution_time=self._clock()
        )
        settlement = None
        if change.entered_resolved:
            settlement = await self._settlement.settle(market.id, index)
        logger.info("Market %s resolved: %s (index %d)", market.id, decision.outcome.value, index)
        return ResolutionResult(
            market=change.market, result=RESOLVED, decision=decision, settlement=settlement
        )

    def _check_eligible(self, market: Market, allow_closed: bool) -> int:
        """Return the market's chain id, or raise MarketNotEligibleError."""
        if market.chain_id is None:
            raise MarketNotEligibleError(market.id, "no chain id")
        allowed = {MarketStatus.ACTIVE, MarketStatus.CLOSED} if allow_closed else {MarketStatus.ACTIVE}
        if market.status not in allowed:
            raise MarketNotEligibleError(market.id, f"status is {market.status.value}")
        if ensure_utc(market.closing_time) >= self._clock():
            raise MarketNotEligibleError(market.id, "closing time not reached")
        return market.chain_id

    def _disabled_reason(self) -> str:
        missing = []
        if not self.decision_service_configured:
            missing.append("decision service not configured")
        if not self.signer_configured:
            missing.append("no submission identity")
        return ", ".join(missing)
