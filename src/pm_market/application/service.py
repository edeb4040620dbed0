"""MarketService — registration, anchoring, trade recording and read access.

Writes go through the store's atomic mutators; this layer only validates
input and translates store results into domain errors.
"""

import logging
from decimal import Decimal

from src.pm_common.amounts import ZERO, quantize_money, quantize_shares, to_decimal
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, PositionStatus, outcome_index, outcome_label
from src.pm_common.errors import (
    InvalidTradeError,
    MarketNotFoundError,
    PositionClosedError,
    PositionNotFoundError,
)
from src.pm_market.domain.models import Market, NewMarket, Position, UserStats
from src.pm_market.domain.repository import MarketStoreProtocol

logger = logging.getLogger(__name__)


class MarketService:
    def __init__(self, store: MarketStoreProtocol) -> None:
        self._store = store

    async def register_market(self, new: NewMarket) -> Market:
        market = await self._store.create_market(new)
        logger.info("Registered market %s (chain_id=%s)", market.id, market.chain_id)
        return market

    async def anchor_chain_id(self, market_id: str, chain_id: int) -> Market:
        market = await self._store.anchor_chain_id(market_id, chain_id)
        logger.info("Anchored market %s to chain_id=%d", market_id, chain_id)
        return market

    async def get_market(self, market_id: str) -> Market:
        market = await self._store.get_market(market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        return market

    async def list_markets(self, status: MarketStatus | None = None) -> list[Market]:
        return await self._store.list_markets([status] if status is not None else None)

    async def record_trade(
        self,
        user_address: str,
        market_id: str,
        outcome: str,
        shares: Decimal | str,
        cost: Decimal | str,
    ) -> Position:
        """Open a position on first trade, or merge into the open one.

        Merged positions keep a size-weighted average price.
        """
        try:
            label = outcome_label(outcome_index(outcome))
            shares_d = quantize_shares(to_decimal(shares))
            cost_d = quantize_money(to_decimal(cost))
        except (TypeError, ValueError) as e:
            raise InvalidTradeError(str(e)) from e
        if shares_d <= ZERO:
            raise InvalidTradeError("shares must be positive")
        if cost_d < ZERO:
            raise InvalidTradeError("cost must not be negative")

        position = await self._store.apply_trade(user_address, market_id, label, shares_d, cost_d)
        logger.debug(
            "Trade recorded: user=%s market=%s %s +%s shares for %s",
            user_address, market_id, label, shares_d, cost_d,
        )
        return position

    async def exit_position(self, position_id: str, proceeds: Decimal | str) -> Position:
        """Close a position by explicit exit; realized P&L is frozen here.

        Only while the market is active: once trading stops, settlement alone
        decides the P&L of every open position.
        """
        position = await self._store.get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        if position.status == PositionStatus.CLOSED:
            raise PositionClosedError(position_id)
        try:
            proceeds_d = quantize_money(to_decimal(proceeds))
        except (TypeError, ValueError) as e:
            raise InvalidTradeError(str(e)) from e
        if proceeds_d < ZERO:
            raise InvalidTradeError("proceeds must not be negative")

        closed = await self._store.exit_position(position_id, proceeds_d, utc_now())
        if closed is None:
            # lost the race to settlement or another exit
            raise PositionClosedError(position_id)
        logger.info("Position %s exited, realized_pnl=%s", position_id, closed.realized_pnl)
        return closed

    async def list_market_positions(self, market_id: str) -> list[Position]:
        await self.get_market(market_id)
        return await self._store.list_positions_by_market(market_id)

    async def list_user_positions(self, user_address: str) -> list[Position]:
        return await self._store.list_positions_by_user(user_address)

    async def get_user_stats(self, user_address: str) -> UserStats:
        stats = await self._store.get_user_stats(user_address)
        return stats or UserStats(user_address=user_address)
