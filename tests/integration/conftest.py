"""Integration test fixtures: the HTTP app over a real SQLite ledger."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from disbursement_engine.api.app import create_app
from disbursement_engine.bootstrap import ServiceContainer


@pytest_asyncio.fixture
async def container(settings, database, gateway) -> ServiceContainer:
    """Engine wired to the test database and the stub gateway."""
    return ServiceContainer.build(settings, database=database, gateway=gateway)


@pytest_asyncio.fixture
async def client(container) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app(container=container)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
