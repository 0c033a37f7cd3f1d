"""E2E test fixtures for HTTP testing."""

from uuid import UUID

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from hiring_pipeline.main import app


@pytest_asyncio.fixture
async def http_client(clean_db):
    """HTTP client for testing actual FastAPI app.

    Uses the clean_db fixture to ensure database is clean for each test.
    The app's lifespan context manager is not run; the pool comes from db_pool.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


def identity_headers(user_id: UUID, role: str, company_id: UUID) -> dict[str, str]:
    """Caller identity headers as forwarded by the gateway.

    Args:
        user_id: Acting user
        role: User role
        company_id: Caller's company

    Returns:
        Header dict for httpx requests
    """
    return {
        "X-User-ID": str(user_id),
        "X-User-Role": role,
        "X-Company-ID": str(company_id),
    }
