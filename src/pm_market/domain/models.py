"""Domain models for pm_market — pure dataclasses plus the status lattice.

Status only moves forward along active → closed → {resolved, invalid};
resolved and invalid are both terminal. The ledger is authoritative, so a
later-observed but older status is simply a no-op, never a regression.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from src.pm_common.enums import MarketStatus, PositionStatus

_RANK: dict[MarketStatus, int] = {
    MarketStatus.ACTIVE: 0,
    MarketStatus.CLOSED: 1,
    MarketStatus.RESOLVED: 2,
    MarketStatus.INVALID: 2,
}

TERMINAL_STATUSES = frozenset({MarketStatus.RESOLVED, MarketStatus.INVALID})


def is_terminal(status: MarketStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_advance(current: MarketStatus, target: MarketStatus) -> bool:
    """True iff `target` is strictly ahead of `current` on the lattice."""
    if is_terminal(current):
        return False
    return _RANK[target] > _RANK[current]


@dataclass
class Market:
    id: str
    chain_id: int | None
    question: str
    description: str | None
    category: str
    outcomes: list[str]
    closing_time: datetime
    status: MarketStatus
    resolved_outcome: int | None
    resolution_time: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass
class Position:
    id: str
    user_address: str
    market_id: str
    outcome: str
    shares: Decimal
    average_price: Decimal
    total_cost: Decimal
    unrealized_pnl: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.OPEN
    created_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class UserStats:
    user_address: str
    total_pnl: Decimal = Decimal("0")
    total_volume: Decimal = Decimal("0")
    markets_traded: int = 0


@dataclass
class NewMarket:
    """Input for market registration; the store assigns id and timestamps."""

    question: str
    category: str
    closing_time: datetime
    outcomes: list[str] = field(default_factory=lambda: ["Yes", "No"])
    description: str | None = None
    chain_id: int | None = None


@dataclass
class StatusChange:
    """Result of an attempted status advance on a single market."""

    market: Market
    previous: MarketStatus
    advanced: bool

    @property
    def entered_resolved(self) -> bool:
        return self.advanced and self.market.status == MarketStatus.RESOLVED
