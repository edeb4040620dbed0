"""Composition root — builds every collaborator once per process.

Routers reach the container through `request.app.state.container`; tests
build their own container from fakes and pass it to `create_app`.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from fastapi import Request

from config.settings import Settings
from src.pm_clearing.domain.settlement import SettlementProcessor
from src.pm_ledger.domain.client import LedgerClientProtocol
from src.pm_market.application.service import MarketService
from src.pm_market.domain.repository import MarketStoreProtocol
from src.pm_oracle.application.engine import DecisionEngine
from src.pm_oracle.domain.decision import DecisionServiceProtocol
from src.pm_scheduler.checkpoint import SyncCheckpoint
from src.pm_scheduler.scheduler import Scheduler
from src.pm_sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    settings: Settings
    store: MarketStoreProtocol
    ledger: LedgerClientProtocol
    decision_service: DecisionServiceProtocol
    checkpoint: SyncCheckpoint
    settlement: SettlementProcessor
    reconciler: Reconciler
    decision_engine: DecisionEngine
    market_service: MarketService
    scheduler: Scheduler
    # Release pools and HTTP clients, in order, at shutdown
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            try:
                await close()
            except Exception:
                logger.exception("Error while releasing %r", close)


def assemble(
    settings: Settings,
    store: MarketStoreProtocol,
    ledger: LedgerClientProtocol,
    decision_service: DecisionServiceProtocol,
    checkpoint: SyncCheckpoint | None = None,
) -> AppContainer:
    """Wire the application services around the given adapters."""
    checkpoint = checkpoint or SyncCheckpoint()
    settlement = SettlementProcessor(store)
    reconciler = Reconciler(
        store, ledger, settlement, item_delay=settings.SYNC_ITEM_DELAY_SECONDS
    )
    engine = DecisionEngine(
        store,
        ledger,
        decision_service,
        settlement,
        checkpoint.resolution_guard,
        confirm_timeout=settings.TX_CONFIRM_TIMEOUT_SECONDS,
        market_delay=settings.RESOLUTION_MARKET_DELAY_SECONDS,
        min_confidence=settings.DECISION_MIN_CONFIDENCE,
    )
    scheduler = Scheduler(
        reconciler,
        engine,
        checkpoint,
        reconcile_interval=settings.RECONCILE_INTERVAL_SECONDS,
        resolution_interval=settings.RESOLUTION_INTERVAL_SECONDS,
    )
    return AppContainer(
        settings=settings,
        store=store,
        ledger=ledger,
        decision_service=decision_service,
        checkpoint=checkpoint,
        settlement=settlement,
        reconciler=reconciler,
        decision_engine=engine,
        market_service=MarketService(store),
        scheduler=scheduler,
    )


def build_container(settings: Settings) -> AppContainer:
    """Production wiring: web3 ledger, Anthropic decisions, configured store."""
    from src.pm_ledger.infrastructure.web3_client import Web3LedgerClient
    from src.pm_oracle.infrastructure.anthropic_client import AnthropicDecisionService

    closers: list[Callable[[], Awaitable[None]]] = []
    if settings.STORE_BACKEND == "memory":
        from src.pm_market.infrastructure.memory_store import InMemoryMarketStore

        store: MarketStoreProtocol = InMemoryMarketStore()
    elif settings.STORE_BACKEND == "postgres":
        from src.pm_common.database import create_engine, create_session_factory
        from src.pm_market.infrastructure.persistence import PostgresMarketStore

        db_engine = create_engine(settings)
        store = PostgresMarketStore(create_session_factory(db_engine))
        closers.append(db_engine.dispose)
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND!r}")

    ledger = Web3LedgerClient(
        settings.RPC_URL,
        settings.MARKET_FACTORY_ADDRESS,
        settings.ORACLE_PRIVATE_KEY,
        poll_interval=settings.EVENT_POLL_INTERVAL_SECONDS,
        start_block=settings.EVENT_START_BLOCK,
    )
    decisions = AnthropicDecisionService(
        settings.ANTHROPIC_API_KEY,
        model=settings.ANTHROPIC_MODEL,
        base_url=settings.ANTHROPIC_BASE_URL,
        max_tokens=settings.DECISION_MAX_TOKENS,
        temperature=settings.DECISION_TEMPERATURE,
        timeout=settings.DECISION_TIMEOUT_SECONDS,
    )
    closers.append(decisions.aclose)

    container = assemble(settings, store, ledger, decisions)
    container.closers = closers
    if ledger.can_submit:
        logger.info("Oracle transactions will be signed by %s", ledger.submitter_address)
    else:
        logger.warning("ORACLE_PRIVATE_KEY not set: close/resolve submissions are disabled")
    if not decisions.configured:
        logger.warning("ANTHROPIC_API_KEY not set: automated resolution is disabled")
    return container


def get_container(request: Request) -> AppContainer:
    return request.app.state.container
