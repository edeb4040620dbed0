"""InMemoryMarketStore — process-local MarketStoreProtocol for dev and tests.

Per-key asyncio.Lock around every read-modify-write. Callers always get copies, so a
returned record can never be mutated behind the store's back.
"""

import asyncio
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from src.pm_common.amounts import quantize_money, weighted_average_price
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, PositionStatus
from src.pm_common.errors import ChainIdConflictError, MarketNotActiveError, MarketNotFoundError
from src.pm_market.domain.models import (
    Market,
    NewMarket,
    Position,
    StatusChange,
    UserStats,
    can_advance,
)


def _copy(market: Market) -> Market:
    return replace(market, outcomes=list(market.outcomes))


class InMemoryMarketStore:
    def __init__(self) -> None:
        self._markets: dict[str, Market] = {}
        self._chain_index: dict[int, str] = {}
        self._positions: dict[str, Position] = {}
        self._stats: dict[str, UserStats] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._chain_lock = asyncio.Lock()

    def _lock(self, kind: str, key: str) -> asyncio.Lock:
        return self._locks[f"{kind}:{key}"]

    # --- markets ---

    async def create_market(self, new: NewMarket) -> Market:
        now = utc_now()
        market = Market(
            id=uuid.uuid4().hex,
            chain_id=new.chain_id,
            question=new.question,
            description=new.description,
            category=new.category,
            outcomes=list(new.outcomes),
            closing_time=new.closing_time,
            status=MarketStatus.ACTIVE,
            resolved_outcome=None,
            resolution_time=None,
            created_at=now,
            updated_at=now,
        )
        async with self._chain_lock:
            if new.chain_id is not None:
                if new.chain_id in self._chain_index:
                    raise ChainIdConflictError(self._chain_index[new.chain_id], new.chain_id)
                self._chain_index[new.chain_id] = market.id
            self._markets[market.id] = market
        return _copy(market)

    async def get_market(self, market_id: str) -> Market | None:
        market = self._markets.get(market_id)
        return _copy(market) if market else None

    async def get_market_by_chain_id(self, chain_id: int) -> Market | None:
        market_id = self._chain_index.get(chain_id)
        return await self.get_market(market_id) if market_id else None

    async def list_markets(self, statuses: list[MarketStatus] | None = None) -> list[Market]:
        return [
            _copy(m)
            for m in sorted(self._markets.values(), key=lambda m: (m.created_at, m.id))
            if statuses is None or m.status in statuses
        ]

    async def anchor_chain_id(self, market_id: str, chain_id: int) -> Market:
        async with self._chain_lock, self._lock("market", market_id):
            market = self._markets.get(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            if market.chain_id == chain_id:
                return _copy(market)
            owner = self._chain_index.get(chain_id)
            if market.chain_id is not None or owner is not None:
                raise ChainIdConflictError(market_id, chain_id)
            market.chain_id = chain_id
            market.updated_at = utc_now()
            self._chain_index[chain_id] = market_id
            return _copy(market)

    async def advance_status(
        self,
        market_id: str,
        target: MarketStatus,
        resolved_outcome: int | None = None,
        resolution_time: datetime | None = None,
    ) -> StatusChange:
        async with self._lock("market", market_id):
            market = self._markets.get(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            previous = market.status
            # yield inside the critical section, as a DB round-trip would
            await asyncio.sleep(0)
            if not can_advance(previous, target):
                return StatusChange(market=_copy(market), previous=previous, advanced=False)
            market.status = target
            market.resolved_outcome = resolved_outcome if target == MarketStatus.RESOLVED else None
            market.resolution_time = (
                None if target == MarketStatus.CLOSED else (resolution_time or utc_now())
            )
            market.updated_at = utc_now()
            return StatusChange(market=_copy(market), previous=previous, advanced=True)

    async def list_resolved_with_open_positions(self) -> list[Market]:
        market_ids = {
            p.market_id for p in self._positions.values() if p.status == PositionStatus.OPEN
        }
        return [
            m for m in await self.list_markets([MarketStatus.RESOLVED]) if m.id in market_ids
        ]

    # --- positions ---

    async def get_position(self, position_id: str) -> Position | None:
        position = self._positions.get(position_id)
        return replace(position) if position else None

    async def list_open_positions(self, market_id: str) -> list[Position]:
        return [
            p for p in await self.list_positions_by_market(market_id)
            if p.status == PositionStatus.OPEN
        ]

    async def list_positions_by_market(self, market_id: str) -> list[Position]:
        return [replace(p) for p in self._positions.values() if p.market_id == market_id]

    async def list_positions_by_user(self, user_address: str) -> list[Position]:
        return [replace(p) for p in self._positions.values() if p.user_address == user_address]

    async def apply_trade(
        self,
        user_address: str,
        market_id: str,
        outcome: str,
        shares: Decimal,
        cost: Decimal,
    ) -> Position:
        async with self._lock("market", market_id):
            market = self._markets.get(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            if market.status != MarketStatus.ACTIVE:
                raise MarketNotActiveError(market_id)

            existing = self._find_open(user_address, market_id, outcome)
            if existing is not None:
                async with self._lock("position", existing.id):
                    if existing.status != PositionStatus.OPEN:
                        # closed by an exit while we waited for the lock
                        existing = None
                    else:
                        existing.shares += shares
                        existing.total_cost += cost
                        existing.average_price = weighted_average_price(
                            existing.total_cost, existing.shares
                        )
            if existing is not None:
                position = existing
            else:
                position = Position(
                    id=uuid.uuid4().hex,
                    user_address=user_address,
                    market_id=market_id,
                    outcome=outcome,
                    shares=shares,
                    average_price=weighted_average_price(cost, shares),
                    total_cost=cost,
                    created_at=utc_now(),
                )
                self._positions[position.id] = position

            async with self._lock("user", user_address):
                stats = self._stats.setdefault(user_address, UserStats(user_address))
                stats.total_volume += cost
                if existing is None:
                    stats.markets_traded += 1
            return replace(position)

    def _find_open(self, user_address: str, market_id: str, outcome: str) -> Position | None:
        return next(
            (
                p for p in self._positions.values()
                if p.user_address == user_address
                and p.market_id == market_id
                and p.outcome == outcome
                and p.status == PositionStatus.OPEN
            ),
            None,
        )

    async def close_position(
        self,
        position_id: str,
        realized_pnl: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        async with self._lock("position", position_id):
            position = self._positions.get(position_id)
            if position is None or position.status == PositionStatus.CLOSED:
                return None
            await asyncio.sleep(0)
            return await self._close(position, realized_pnl, closed_at)

    async def exit_position(
        self,
        position_id: str,
        proceeds: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        position = self._positions.get(position_id)
        if position is None:
            return None
        # market before position, same order as apply_trade
        async with self._lock("market", position.market_id), self._lock("position", position_id):
            market = self._markets.get(position.market_id)
            if market is None or market.status != MarketStatus.ACTIVE:
                raise MarketNotActiveError(position.market_id)
            if position.status == PositionStatus.CLOSED:
                return None
            await asyncio.sleep(0)
            realized = quantize_money(proceeds - position.total_cost)
            return await self._close(position, realized, closed_at)

    async def _close(
        self, position: Position, realized_pnl: Decimal, closed_at: datetime
    ) -> Position:
        """Caller holds the position lock and has checked it is open."""
        position.status = PositionStatus.CLOSED
        position.realized_pnl = realized_pnl
        position.unrealized_pnl = Decimal("0")
        position.closed_at = closed_at
        async with self._lock("user", position.user_address):
            stats = self._stats.setdefault(position.user_address, UserStats(position.user_address))
            stats.total_pnl += realized_pnl
        return replace(position)

    # --- user stats ---

    async def get_user_stats(self, user_address: str) -> UserStats | None:
        stats = self._stats.get(user_address)
        return replace(stats) if stats else None
