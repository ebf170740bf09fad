"""API test fixtures: the app wired to the per-test SQLite database."""

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from netpay_engine.api.app import create_app


class RecordingPoster:
    """Accounting poster that keeps every journal it receives."""

    def __init__(self):
        self.journals = []

    async def post_journal(self, tenant_id, summary):
        self.journals.append(summary)
        return f"JE-{len(self.journals):04d}"


@pytest.fixture
def poster() -> RecordingPoster:
    return RecordingPoster()


@pytest.fixture
def app(settings, database, poster) -> FastAPI:
    return create_app(settings, database, poster)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.dispatcher.drain()


@pytest.fixture
def headers(test_tenant) -> dict[str, str]:
    return {"X-Tenant-ID": str(test_tenant.tenant_id)}


@pytest.fixture
def run_jobs(app: FastAPI):
    """Wait for every job the inline dispatcher started."""

    async def drain() -> None:
        await app.state.dispatcher.drain()

    return drain
