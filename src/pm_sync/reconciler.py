"""Reconciler — one-directional merge of ledger truth into the local store.

The ledger always wins, but only forward: `advance_status` ignores any
observation that is not strictly ahead of the local status, so a late
"closed" after a fast-path "resolved" is a no-op. Whoever actually moves a
market into `resolved` triggers settlement; settlement itself is idempotent,
so the polling path and the event path can never pay out twice.

Side effects are local-store writes only. The Reconciler never submits a
ledger transaction.
"""

import asyncio
import logging
from dataclasses import dataclass

from src.pm_clearing.domain.settlement import SettlementProcessor, SettlementReport
from src.pm_common.enums import LedgerEventName, MarketStatus
from src.pm_common.errors import ChainIdConflictError
from src.pm_ledger.domain.client import LedgerClientProtocol
from src.pm_ledger.domain.models import LedgerEvent, LedgerMarket
from src.pm_market.domain.models import Market, NewMarket, StatusChange
from src.pm_market.domain.repository import MarketStoreProtocol
from src.pm_scheduler.checkpoint import SyncCheckpoint

logger = logging.getLogger(__name__)

WATCHED_EVENTS = (
    LedgerEventName.MARKET_CREATED,
    LedgerEventName.MARKET_CLOSED,
    LedgerEventName.MARKET_RESOLVED,
)


@dataclass
class ReconcileReport:
    examined: int = 0
    updated: int = 0
    settled: int = 0
    unanchored: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "examined": self.examined,
            "updated": self.updated,
            "settled": self.settled,
            "unanchored": self.unanchored,
            "failed": self.failed,
        }


class Reconciler:
    def __init__(
        self,
        store: MarketStoreProtocol,
        ledger: LedgerClientProtocol,
        settlement: SettlementProcessor,
        *,
        item_delay: float = 0.0,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._settlement = settlement
        self._item_delay = item_delay

    async def sync(self, market: Market) -> StatusChange | None:
        """Merge the on-chain status of one market. None if it has no chain_id yet."""
        if market.chain_id is None:
            return None
        chain = await self._ledger.read_market(market.chain_id)
        return await self._merge(market.id, chain.status, chain.resolved_outcome)

    async def sync_all(self) -> ReconcileReport:
        """One reconciliation sweep over every non-terminal market.

        A failing market is logged and counted; the sweep always finishes.
        """
        report = ReconcileReport()
        markets = await self._store.list_markets([MarketStatus.ACTIVE, MarketStatus.CLOSED])
        for market in markets:
            if market.chain_id is None:
                report.unanchored += 1
                continue
            report.examined += 1
            try:
                change = await self.sync(market)
            except Exception:
                logger.exception("Failed to sync market %s (chain_id=%s)", market.id, market.chain_id)
                report.failed += 1
            else:
                if change is not None and change.advanced:
                    report.updated += 1
                    if change.entered_resolved:
                        report.settled += 1
            if self._item_delay:
                await asyncio.sleep(self._item_delay)

        report.settled += await self._settle_stragglers()
        logger.info(
            "Reconciliation sweep: %d examined, %d updated, %d settled, %d failed",
            report.examined, report.updated, report.settled, report.failed,
        )
        return report

    async def apply_event(self, event: LedgerEvent) -> None:
        """Apply one ledger event with the same merge rules as `sync`."""
        if event.name == LedgerEventName.MARKET_CREATED:
            await self._on_created(event.chain_id)
            return

        market = await self._store.get_market_by_chain_id(event.chain_id)
        if market is None:
            logger.debug("%s for unknown chain_id=%d ignored", event.name.value, event.chain_id)
            return
        if event.name == LedgerEventName.MARKET_CLOSED:
            await self._merge(market.id, MarketStatus.CLOSED, None)
        elif event.name == LedgerEventName.MARKET_RESOLVED:
            await self._merge(market.id, MarketStatus.RESOLVED, event.outcome)

    async def watch(self, checkpoint: SyncCheckpoint) -> None:
        """Long-lived subscription; returns only when cancelled."""
        await self._ledger.subscribe(WATCHED_EVENTS, self.apply_event, checkpoint)

    # -- internals ----------------------------------------------------------

    async def _merge(
        self, market_id: str, status: MarketStatus, resolved_outcome: int | None
    ) -> StatusChange:
        if status == MarketStatus.RESOLVED and resolved_outcome is None:
            raise ValueError(f"Ledger reports market {market_id} resolved without an outcome")
        change = await self._store.advance_status(market_id, status, resolved_outcome)
        if change.advanced:
            logger.info(
                "Market %s synced: %s -> %s (outcome=%s)",
                market_id, change.previous.value, status.value, resolved_outcome,
            )
        if change.entered_resolved:
            await self._settle(change.market)
        return change

    async def _settle(self, market: Market) -> SettlementReport:
        if market.resolved_outcome is None:
            raise ValueError(f"Market {market.id} is resolved without an outcome")
        return await self._settlement.settle(market.id, market.resolved_outcome)

    async def _settle_stragglers(self) -> int:
        """Settle resolved markets that still hold open positions."""
        settled = 0
        for market in await self._store.list_resolved_with_open_positions():
            try:
                await self._settle(market)
                settled += 1
            except Exception:
                logger.exception("Catch-up settlement failed for market %s", market.id)
        return settled

    async def _on_created(self, chain_id: int) -> None:
        if await self._store.get_market_by_chain_id(chain_id) is not None:
            return
        chain = await self._ledger.read_market(chain_id)
        try:
            market = await self._store.create_market(_new_market_from_chain(chain))
        except ChainIdConflictError:
            # anchored by another path between our lookup and insert
            logger.debug("Market for chain_id=%d already registered", chain_id)
            return
        logger.info("Registered market %s from chain_id=%d", market.id, chain_id)
        if chain.status != MarketStatus.ACTIVE:
            await self._merge(market.id, chain.status, chain.resolved_outcome)


def _new_market_from_chain(chain: LedgerMarket) -> NewMarket:
    return NewMarket(
        question=chain.title,
        description=chain.description or None,
        category=chain.category or "Uncategorized",
        closing_time=chain.end_time,
        chain_id=chain.chain_id,
    )
