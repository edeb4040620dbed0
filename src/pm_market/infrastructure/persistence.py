"""PostgresMarketStore — concrete implementation of MarketStoreProtocol.

All queries use raw text() SQL (no ORM).
asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.

Atomicity: every public mutator runs in its own transaction. Status changes
lock the market row (SELECT ... FOR UPDATE) across the read-modify-write;
position closes are a single conditional UPDATE (`WHERE status = 'open'`),
so two settlers racing on one position can only close it once. Trades and
explicit exits take the market row FOR SHARE, so neither can land after the
market has left `active`.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, PositionStatus
from src.pm_common.errors import (
    ChainIdConflictError,
    InternalError,
    MarketNotActiveError,
    MarketNotFoundError,
)
from src.pm_market.domain.models import (
    Market,
    NewMarket,
    Position,
    StatusChange,
    UserStats,
    can_advance,
)

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_MARKET_COLS = """
    id, chain_id, question, description, category, outcomes,
    closing_time, status, resolved_outcome, resolution_time,
    created_at, updated_at
"""

_POSITION_COLS = """
    id, user_address, market_id, outcome,
    shares, average_price, total_cost,
    unrealized_pnl, realized_pnl, status,
    created_at, closed_at
"""

_INSERT_MARKET_SQL = text(f"""
    INSERT INTO markets (question, description, category, outcomes, closing_time, chain_id)
    VALUES (:question, :description, :category, CAST(:outcomes AS JSONB),
            :closing_time, :chain_id)
    RETURNING {_MARKET_COLS}
""")

_GET_MARKET_SQL = text(f"SELECT {_MARKET_COLS} FROM markets WHERE id = :market_id")

_GET_MARKET_FOR_UPDATE_SQL = text(
    f"SELECT {_MARKET_COLS} FROM markets WHERE id = :market_id FOR UPDATE"
)

_GET_MARKET_STATUS_FOR_SHARE_SQL = text(
    "SELECT status FROM markets WHERE id = :market_id FOR SHARE"
)

_GET_MARKET_BY_CHAIN_SQL = text(f"SELECT {_MARKET_COLS} FROM markets WHERE chain_id = :chain_id")

_LIST_MARKETS_SQL = text(f"""
    SELECT {_MARKET_COLS}
    FROM markets
    WHERE CAST(:statuses AS TEXT[]) IS NULL
       OR status = ANY(CAST(:statuses AS TEXT[]))
    ORDER BY created_at, id
""")

_ANCHOR_CHAIN_ID_SQL = text(f"""
    UPDATE markets
    SET chain_id = :chain_id, updated_at = NOW()
    WHERE id = :market_id
      AND (chain_id IS NULL OR chain_id = :chain_id)
    RETURNING {_MARKET_COLS}
""")

_UPDATE_STATUS_SQL = text(f"""
    UPDATE markets
    SET status = :status,
        resolved_outcome = :resolved_outcome,
        resolution_time = :resolution_time,
        updated_at = NOW()
    WHERE id = :market_id
    RETURNING {_MARKET_COLS}
""")

_LIST_RESOLVED_WITH_OPEN_SQL = text(f"""
    SELECT {_MARKET_COLS}
    FROM markets m
    WHERE m.status = 'resolved'
      AND EXISTS (
          SELECT 1 FROM positions p
          WHERE p.market_id = m.id AND p.status = 'open'
      )
    ORDER BY m.resolution_time, m.id
""")

_GET_POSITION_SQL = text(f"SELECT {_POSITION_COLS} FROM positions WHERE id = :position_id")

_LIST_OPEN_POSITIONS_SQL = text(f"""
    SELECT {_POSITION_COLS}
    FROM positions
    WHERE market_id = :market_id AND status = 'open'
    ORDER BY created_at, id
""")

_LIST_POSITIONS_BY_MARKET_SQL = text(f"""
    SELECT {_POSITION_COLS} FROM positions
    WHERE market_id = :market_id
    ORDER BY created_at, id
""")

_LIST_POSITIONS_BY_USER_SQL = text(f"""
    SELECT {_POSITION_COLS} FROM positions
    WHERE user_address = :user_address
    ORDER BY created_at, id
""")

# Merge into the single open position per (user, market, outcome).
# xmax = 0 only for freshly inserted rows.
_UPSERT_POSITION_SQL = text(f"""
    INSERT INTO positions (user_address, market_id, outcome, shares, average_price, total_cost)
    VALUES (:user_address, :market_id, :outcome, :shares, :average_price, :total_cost)
    ON CONFLICT (user_address, market_id, outcome) WHERE status = 'open'
    DO UPDATE SET
        shares = positions.shares + EXCLUDED.shares,
        total_cost = positions.total_cost + EXCLUDED.total_cost,
        average_price = ROUND(
            (positions.total_cost + EXCLUDED.total_cost)
            / (positions.shares + EXCLUDED.shares),
            4
        )
    RETURNING {_POSITION_COLS}, (xmax = 0) AS inserted
""")

_CLOSE_POSITION_SQL = text(f"""
    UPDATE positions
    SET status = 'closed',
        realized_pnl = :realized_pnl,
        unrealized_pnl = 0,
        closed_at = :closed_at
    WHERE id = :position_id AND status = 'open'
    RETURNING {_POSITION_COLS}
""")

# Realized P&L is derived from the row being closed, not from a stale read
_EXIT_POSITION_SQL = text(f"""
    UPDATE positions
    SET status = 'closed',
        realized_pnl = ROUND(CAST(:proceeds AS NUMERIC) - total_cost, 2),
        unrealized_pnl = 0,
        closed_at = :closed_at
    WHERE id = :position_id AND status = 'open'
    RETURNING {_POSITION_COLS}
""")

_GET_POSITION_MARKET_SQL = text("SELECT market_id FROM positions WHERE id = :position_id")

_CREDIT_PNL_SQL = text("""
    INSERT INTO user_stats (user_address, total_pnl)
    VALUES (:user_address, :amount)
    ON CONFLICT (user_address) DO UPDATE SET
        total_pnl = user_stats.total_pnl + EXCLUDED.total_pnl,
        updated_at = NOW()
""")

_ADD_VOLUME_SQL = text("""
    INSERT INTO user_stats (user_address, total_volume, markets_traded)
    VALUES (:user_address, :volume, :markets_traded)
    ON CONFLICT (user_address) DO UPDATE SET
        total_volume = user_stats.total_volume + EXCLUDED.total_volume,
        markets_traded = user_stats.markets_traded + EXCLUDED.markets_traded,
        updated_at = NOW()
""")

_GET_USER_STATS_SQL = text("""
    SELECT user_address, total_pnl, total_volume, markets_traded
    FROM user_stats
    WHERE user_address = :user_address
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_market(row: Any) -> Market:
    outcomes = row.outcomes
    if isinstance(outcomes, str):
        # asyncpg hands JSONB back as text unless a codec is registered
        outcomes = json.loads(outcomes)
    return Market(
        id=str(row.id),
        chain_id=row.chain_id,
        question=row.question,
        description=row.description,
        category=row.category,
        outcomes=list(outcomes),
        closing_time=row.closing_time,
        status=MarketStatus(row.status),
        resolved_outcome=row.resolved_outcome,
        resolution_time=row.resolution_time,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_position(row: Any) -> Position:
    return Position(
        id=str(row.id),
        user_address=row.user_address,
        market_id=row.market_id,
        outcome=row.outcome,
        shares=Decimal(row.shares),
        average_price=Decimal(row.average_price),
        total_cost=Decimal(row.total_cost),
        unrealized_pnl=Decimal(row.unrealized_pnl),
        realized_pnl=Decimal(row.realized_pnl),
        status=PositionStatus(row.status),
        created_at=row.created_at,
        closed_at=row.closed_at,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class PostgresMarketStore:
    """One short transaction per call; sessions come from the shared factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # --- markets ---

    async def create_market(self, new: NewMarket) -> Market:
        params = {
            "question": new.question,
            "description": new.description,
            "category": new.category,
            "outcomes": json.dumps(new.outcomes),
            "closing_time": new.closing_time,
            "chain_id": new.chain_id,
        }
        try:
            async with self._session_factory() as db, db.begin():
                row = (await db.execute(_INSERT_MARKET_SQL, params)).fetchone()
        except IntegrityError as e:
            raise ChainIdConflictError("<new>", new.chain_id or -1) from e
        return _row_to_market(row)

    async def get_market(self, market_id: str) -> Market | None:
        async with self._session_factory() as db:
            row = (await db.execute(_GET_MARKET_SQL, {"market_id": market_id})).fetchone()
        return _row_to_market(row) if row else None

    async def get_market_by_chain_id(self, chain_id: int) -> Market | None:
        async with self._session_factory() as db:
            row = (await db.execute(_GET_MARKET_BY_CHAIN_SQL, {"chain_id": chain_id})).fetchone()
        return _row_to_market(row) if row else None

    async def list_markets(self, statuses: list[MarketStatus] | None = None) -> list[Market]:
        values = [s.value for s in statuses] if statuses is not None else None
        async with self._session_factory() as db:
            rows = (await db.execute(_LIST_MARKETS_SQL, {"statuses": values})).fetchall()
        return [_row_to_market(r) for r in rows]

    async def anchor_chain_id(self, market_id: str, chain_id: int) -> Market:
        try:
            async with self._session_factory() as db, db.begin():
                row = (
                    await db.execute(
                        _ANCHOR_CHAIN_ID_SQL, {"market_id": market_id, "chain_id": chain_id}
                    )
                ).fetchone()
                if row is None:
                    existing = (
                        await db.execute(_GET_MARKET_SQL, {"market_id": market_id})
                    ).fetchone()
                    if existing is None:
                        raise MarketNotFoundError(market_id)
                    raise ChainIdConflictError(market_id, chain_id)
        except IntegrityError as e:
            # chain_id already anchored to another market
            raise ChainIdConflictError(market_id, chain_id) from e
        return _row_to_market(row)

    async def advance_status(
        self,
        market_id: str,
        target: MarketStatus,
        resolved_outcome: int | None = None,
        resolution_time: datetime | None = None,
    ) -> StatusChange:
        async with self._session_factory() as db, db.begin():
            row = (
                await db.execute(_GET_MARKET_FOR_UPDATE_SQL, {"market_id": market_id})
            ).fetchone()
            if row is None:
                raise MarketNotFoundError(market_id)
            current = _row_to_market(row)
            if not can_advance(current.status, target):
                return StatusChange(market=current, previous=current.status, advanced=False)

            terminal_time = resolution_time or utc_now()
            updated_row = (
                await db.execute(
                    _UPDATE_STATUS_SQL,
                    {
                        "market_id": market_id,
                        "status": target.value,
                        "resolved_outcome": (
                            resolved_outcome if target == MarketStatus.RESOLVED else None
                        ),
                        "resolution_time": (
                            terminal_time if target != MarketStatus.CLOSED else None
                        ),
                    },
                )
            ).fetchone()
            if updated_row is None:
                raise InternalError(f"Status update for market {market_id} returned no rows")
        return StatusChange(
            market=_row_to_market(updated_row), previous=current.status, advanced=True
        )

    async def list_resolved_with_open_positions(self) -> list[Market]:
        async with self._session_factory() as db:
            rows = (await db.execute(_LIST_RESOLVED_WITH_OPEN_SQL)).fetchall()
        return [_row_to_market(r) for r in rows]

    # --- positions ---

    async def get_position(self, position_id: str) -> Position | None:
        async with self._session_factory() as db:
            row = (
                await db.execute(_GET_POSITION_SQL, {"position_id": position_id})
            ).fetchone()
        return _row_to_position(row) if row else None

    async def list_open_positions(self, market_id: str) -> list[Position]:
        async with self._session_factory() as db:
            rows = (
                await db.execute(_LIST_OPEN_POSITIONS_SQL, {"market_id": market_id})
            ).fetchall()
        return [_row_to_position(r) for r in rows]

    async def list_positions_by_market(self, market_id: str) -> list[Position]:
        async with self._session_factory() as db:
            rows = (
                await db.execute(_LIST_POSITIONS_BY_MARKET_SQL, {"market_id": market_id})
            ).fetchall()
        return [_row_to_position(r) for r in rows]

    async def list_positions_by_user(self, user_address: str) -> list[Position]:
        async with self._session_factory() as db:
            rows = (
                await db.execute(_LIST_POSITIONS_BY_USER_SQL, {"user_address": user_address})
            ).fetchall()
        return [_row_to_position(r) for r in rows]

    async def apply_trade(
        self,
        user_address: str,
        market_id: str,
        outcome: str,
        shares: Decimal,
        cost: Decimal,
    ) -> Position:
        async with self._session_factory() as db, db.begin():
            # FOR SHARE blocks a concurrent status advance until the trade lands
            status_row = (
                await db.execute(_GET_MARKET_STATUS_FOR_SHARE_SQL, {"market_id": market_id})
            ).fetchone()
            if status_row is None:
                raise MarketNotFoundError(market_id)
            if status_row.status != MarketStatus.ACTIVE.value:
                raise MarketNotActiveError(market_id)

            row: Any = (
                await db.execute(
                    _UPSERT_POSITION_SQL,
                    {
                        "user_address": user_address,
                        "market_id": market_id,
                        "outcome": outcome,
                        "shares": shares,
                        "average_price": (cost / shares).quantize(Decimal("0.0001")),
                        "total_cost": cost,
                    },
                )
            ).fetchone()
            if row is None:
                raise InternalError("Position upsert returned no rows")
            await db.execute(
                _ADD_VOLUME_SQL,
                {
                    "user_address": user_address,
                    "volume": cost,
                    "markets_traded": 1 if row.inserted else 0,
                },
            )
        return _row_to_position(row)

    async def close_position(
        self,
        position_id: str,
        realized_pnl: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        async with self._session_factory() as db, db.begin():
            row = (
                await db.execute(
                    _CLOSE_POSITION_SQL,
                    {
                        "position_id": position_id,
                        "realized_pnl": realized_pnl,
                        "closed_at": closed_at,
                    },
                )
            ).fetchone()
            if row is None:
                return None
            position = _row_to_position(row)
            await db.execute(
                _CREDIT_PNL_SQL,
                {"user_address": position.user_address, "amount": realized_pnl},
            )
        return position

    async def exit_position(
        self,
        position_id: str,
        proceeds: Decimal,
        closed_at: datetime,
    ) -> Position | None:
        async with self._session_factory() as db, db.begin():
            owner = (
                await db.execute(_GET_POSITION_MARKET_SQL, {"position_id": position_id})
            ).fetchone()
            if owner is None:
                return None
            # FOR SHARE holds off a concurrent close/resolve until the exit lands
            status_row = (
                await db.execute(
                    _GET_MARKET_STATUS_FOR_SHARE_SQL, {"market_id": owner.market_id}
                )
            ).fetchone()
            if status_row is None or status_row.status != MarketStatus.ACTIVE.value:
                raise MarketNotActiveError(owner.market_id)

            row = (
                await db.execute(
                    _EXIT_POSITION_SQL,
                    {"position_id": position_id, "proceeds": proceeds, "closed_at": closed_at},
                )
            ).fetchone()
            if row is None:
                return None
            position = _row_to_position(row)
            await db.execute(
                _CREDIT_PNL_SQL,
                {"user_address": position.user_address, "amount": position.realized_pnl},
            )
        return position

    # --- user stats ---

    async def get_user_stats(self, user_address: str) -> UserStats | None:
        async with self._session_factory() as db:
            row: Any = (
                await db.execute(_GET_USER_STATS_SQL, {"user_address": user_address})
            ).fetchone()
        if row is None:
            return None
        return UserStats(
            user_address=row.user_address,
            total_pnl=Decimal(row.total_pnl),
            total_volume=Decimal(row.total_volume),
            markets_traded=row.markets_traded,
        )
