"""Shared test fixtures."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.bootstrap import AppContainer, assemble
from src.pm_market.infrastructure.memory_store import InMemoryMarketStore
from src.pm_scheduler.checkpoint import SyncCheckpoint
from tests.fakes import FakeDecisionService, FakeLedger, make_settings


@pytest.fixture
def store() -> InMemoryMarketStore:
    return InMemoryMarketStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def decisions() -> FakeDecisionService:
    return FakeDecisionService()


@pytest.fixture
def container(
    store: InMemoryMarketStore, ledger: FakeLedger, decisions: FakeDecisionService
) -> AppContainer:
    return assemble(make_settings(), store, ledger, decisions, SyncCheckpoint())


@pytest_asyncio.fixture
async def client(container: AppContainer) -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints against the fake container."""
    from src.main import create_app

    app = create_app(container, app_settings=container.settings, start_background=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
