"""Integration test fixtures: services and the HTTP API over in-memory SQLite."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.api.app import create_app
from settlement_engine.api.dependencies import get_app_settings, get_db_session
from settlement_engine.services import LedgerService, SettlementService


@pytest.fixture
def service(session: AsyncSession, settings) -> SettlementService:
    return SettlementService(session, settings)


@pytest.fixture
def ledger(session: AsyncSession) -> LedgerService:
    return LedgerService(session)


@pytest_asyncio.fixture
async def client(session_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; each request gets its own session."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_app_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
