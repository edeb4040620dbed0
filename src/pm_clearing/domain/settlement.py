"""Market settlement — pay out winners and freeze P&L on every open position.

Winning positions are paid one unit per share, losers nothing:

    payout       = shares if position.outcome == resolved outcome else 0
    realized_pnl = payout - total_cost

Exactly-once per position: the store only closes a position that is still
open, so the event-driven and polling paths may both call `settle` for the
same resolution and the second call changes nothing.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from src.pm_common.amounts import ZERO, quantize_money
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import outcome_label
from src.pm_market.domain.models import Position
from src.pm_market.domain.repository import MarketStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class SettlementReport:
    market_id: str
    outcome_index: int
    settled: int = 0
    skipped: int = 0
    failed: int = 0
    total_payout: Decimal = ZERO
    total_realized_pnl: Decimal = ZERO
    failed_position_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "market_id": self.market_id,
            "outcome_index": self.outcome_index,
            "settled": self.settled,
            "skipped": self.skipped,
            "failed": self.failed,
            "total_payout": str(self.total_payout),
            "total_realized_pnl": str(self.total_realized_pnl),
        }


def position_label(outcome: str) -> str:
    """Positions may carry a label ('Yes') or a raw ledger index ('0')."""
    value = outcome.strip().lower()
    if value.isdigit():
        return outcome_label(int(value))
    return value


def compute_payout(position: Position, winning_label: str) -> tuple[Decimal, Decimal]:
    """Return (payout, realized_pnl) for one position."""
    payout = position.shares if position_label(position.outcome) == winning_label else ZERO
    return quantize_money(payout), quantize_money(payout - position.total_cost)


class SettlementProcessor:
    def __init__(self, store: MarketStoreProtocol) -> None:
        self._store = store

    async def settle(self, market_id: str, resolved_outcome_index: int) -> SettlementReport:
        # Raises on an index the ledger mapping does not know; never guess a winner
        winning_label = outcome_label(resolved_outcome_index)
        report = SettlementReport(market_id=market_id, outcome_index=resolved_outcome_index)
        positions = await self._store.list_open_positions(market_id)
        closed_at = utc_now()

        for position in positions:
            try:
                payout, realized = compute_payout(position, winning_label)
                closed = await self._store.close_position(position.id, realized, closed_at)
            except Exception:
                # Left open; the next reconciliation sweep's catch-up retries it
                logger.exception("Failed to settle position %s in market %s", position.id, market_id)
                report.failed += 1
                report.failed_position_ids.append(position.id)
                continue
            if closed is None:
                report.skipped += 1
                continue
            report.settled += 1
            report.total_payout += payout
            report.total_realized_pnl += realized
            logger.debug(
                "Position %s settled: %s, payout=%s, pnl=%s",
                position.id, "WON" if payout > ZERO else "LOST", payout, realized,
            )

        logger.info(
            "Settled market %s (outcome=%s): %d closed, %d already closed, %d failed",
            market_id, winning_label, report.settled, report.skipped, report.failed,
        )
        return report
