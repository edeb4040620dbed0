# src/pm_market/domain/repository.py
"""Local Store Protocol — dependency inversion for testability.

Every mutating method is atomic for the record it touches: implementations
either hold a per-key lock across the read-modify-write (in-memory) or issue
a single conditional UPDATE (PostgreSQL). Callers never read-then-write a
market or position themselves.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from src.pm_common.enums import MarketStatus
from src.pm_market.domain.models import (
    Market,
    NewMarket,
    Position,
    StatusChange,
    UserStats,
)


class MarketStoreProtocol(Protocol):
    # --- markets ---

    async def create_market(self, new: NewMarket) -> Market: ...

    async def get_market(self, market_id: str) -> Market | None: ...

    async def get_market_by_chain_id(self, chain_id: int) -> Market | None: ...

    async def list_markets(
        self, statuses: list[MarketStatus] | None = None
    ) -> list[Market]: ...

    async def anchor_chain_id(self, market_id: str, chain_id: int) -> Market: ...

    async def advance_status(
        self,
        market_id: str,
        target: MarketStatus,
        resolved_outcome: int | None = None,
        resolution_time: datetime | None = None,
    ) -> StatusChange:
        """Move a market forward on the lattice; a non-advancing target is a no-op."""
        ...

    # --- positions ---

    async def get_position(self, position_id: str) -> Position | None: ...

    async def list_open_positions(self, market_id: str) -> list[Position]: ...

    async def list_positions_by_market(self, market_id: str) -> list[Position]: ...

    async def list_positions_by_user(self, user_address: str) -> list[Position]: ...

    async def apply_trade(
        self,
        user_address: str,
        market_id: str,
        outcome: str,
        shares: Decimal,
        cost: Decimal,
    ) -> Position: ...

    async def close_position(
        self,
        position_id: str,
        realized_pnl: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        """Close an open position and credit the owner's P&L.

        Returns None when the position was already closed.
        """
        ...

    async def exit_position(
        self,
        position_id: str,
        proceeds: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        """Close an open position by explicit exit while its market is still active.

        realized_pnl = proceeds - total_cost, computed under the same lock as
        the close. Raises MarketNotActiveError once trading has stopped;
        returns None when the position is missing or already closed.
        """
        ...

    async def list_resolved_with_open_positions(self) -> list[Market]: ...

    # --- user stats ---

    async def get_user_stats(self, user_address: str) -> UserStats | None: ...
