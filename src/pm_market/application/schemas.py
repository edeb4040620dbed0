"""Pydantic schemas for pm_market API requests and responses.

Amounts are serialized as strings so JSON consumers never see a float.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.pm_common.datetime_utils import ensure_utc
from src.pm_market.domain.models import Market, NewMarket, Position, UserStats


def _iso(dt: object) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()  # type: ignore[attr-defined]


class MarketOut(BaseModel):
    id: str
    chain_id: int | None
    question: str
    description: str | None
    category: str
    outcomes: list[str]
    closing_time: str
    status: str
    resolved_outcome: int | None
    resolution_time: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, m: Market) -> "MarketOut":
        return cls(
            id=m.id,
            chain_id=m.chain_id,
            question=m.question,
            description=m.description,
            category=m.category,
            outcomes=m.outcomes,
            closing_time=m.closing_time.isoformat(),
            status=m.status.value,
            resolved_outcome=m.resolved_outcome,
            resolution_time=_iso(m.resolution_time),
            created_at=m.created_at.isoformat(),
            updated_at=m.updated_at.isoformat(),
        )


class PositionOut(BaseModel):
    id: str
    user_address: str
    market_id: str
    outcome: str
    shares: str
    average_price: str
    total_cost: str
    unrealized_pnl: str
    realized_pnl: str
    status: str
    created_at: str | None
    closed_at: str | None

    @classmethod
    def from_domain(cls, p: Position) -> "PositionOut":
        return cls(
            id=p.id,
            user_address=p.user_address,
            market_id=p.market_id,
            outcome=p.outcome,
            shares=str(p.shares),
            average_price=str(p.average_price),
            total_cost=str(p.total_cost),
            unrealized_pnl=str(p.unrealized_pnl),
            realized_pnl=str(p.realized_pnl),
            status=p.status.value,
            created_at=_iso(p.created_at),
            closed_at=_iso(p.closed_at),
        )


class UserStatsOut(BaseModel):
    user_address: str
    total_pnl: str
    total_volume: str
    markets_traded: int

    @classmethod
    def from_domain(cls, s: UserStats) -> "UserStatsOut":
        return cls(
            user_address=s.user_address,
            total_pnl=str(s.total_pnl),
            total_volume=str(s.total_volume),
            markets_traded=s.markets_traded,
        )


class TradeRequest(BaseModel):
    user_address: str = Field(min_length=1)
    outcome: str = Field(pattern=r"^(?i:yes|no)$")
    # strings, not floats: "12.5" stays exactly 12.5
    shares: str
    cost: str


class ExitRequest(BaseModel):
    proceeds: str


class MarketCreateRequest(BaseModel):
    question: str = Field(min_length=1)
    category: str = Field(default="Uncategorized", min_length=1)
    closing_time: datetime
    description: str | None = None
    outcomes: list[str] = Field(default_factory=lambda: ["Yes", "No"], min_length=2)
    chain_id: int | None = Field(default=None, ge=0)

    def to_domain(self) -> NewMarket:
        return NewMarket(
            question=self.question,
            category=self.category,
            closing_time=ensure_utc(self.closing_time),
            outcomes=self.outcomes,
            description=self.description,
            chain_id=self.chain_id,
        )


class AnchorRequest(BaseModel):
    chain_id: int = Field(ge=0)
