"""Pytest configuration for tests."""

import json
import os
from pathlib import Path

import pytest
import pytest_asyncio
from asyncpg import create_pool
from dotenv import load_dotenv

# Load .env.test file if it exists
env_test_path = Path(__file__).parent.parent / ".env.test"
if env_test_path.exists():
    load_dotenv(env_test_path)

# Set test environment variables before any imports (only if not already set)
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/hiring_pipeline_test")
os.environ.setdefault("LOG_LEVEL", "INFO")

SCHEMA_PATH = Path(__file__).parent.parent / "database" / "schema.sql"


async def _init_connection(conn):
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


@pytest_asyncio.fixture
async def db_pool():
    """Create a test database connection pool and initialize app's DB."""
    from hiring_pipeline.core import database as db_module
    from hiring_pipeline.core.config import settings

    try:
        pool = await create_pool(
            settings.database_url, min_size=1, max_size=5, init=_init_connection
        )
    except Exception as e:
        pytest.skip(f"Test database unavailable: {e}")

    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_PATH.read_text())

    # Initialize the app's database singleton so service functions work
    db_module.db.pool = pool

    yield pool

    # Clean up
    db_module.db.pool = None
    await pool.close()


@pytest_asyncio.fixture
async def clean_db(db_pool):
    """Clean database before each test."""
    async with db_pool.acquire() as conn:
        # Clear all tables in reverse dependency order
        await conn.execute("DELETE FROM candidate_activities")
        await conn.execute("DELETE FROM notifications")
        await conn.execute("DELETE FROM stage_history")
        await conn.execute("DELETE FROM job_candidates")
        await conn.execute("DELETE FROM pipeline_stages")
        await conn.execute("DELETE FROM jobs")
        await conn.execute("DELETE FROM candidates")
        await conn.execute("DELETE FROM sla_thresholds")
        await conn.execute("DELETE FROM system_sla_defaults")
        await conn.execute("DELETE FROM users")
        await conn.execute("DELETE FROM companies")

    yield db_pool


@pytest.fixture
def template():
    """Stage template built from default settings."""
    from hiring_pipeline.services.stages import get_stage_template

    return get_stage_template()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "e2e: marks tests as end-to-end HTTP tests (slower)")
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (medium speed)"
    )
