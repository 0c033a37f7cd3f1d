"""Tests for the asyncpg pool manager (hiring_pipeline/core/database.py)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hiring_pipeline.core.database import Database, _init_connection
from tests.fixtures.factories import AsyncContextManager


def _pool_with(conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=AsyncContextManager(conn))
    return pool


@pytest.mark.asyncio
async def test_connect_success():
    """Pool created with sizing, timeout and the JSONB codec initializer."""
    db = Database()
    mock_pool = MagicMock()

    with patch(
        "hiring_pipeline.core.database.asyncpg.create_pool", new_callable=AsyncMock
    ) as mock_create:
        mock_create.return_value = mock_pool

        await db.connect()

        mock_create.assert_called_once()
        call_kwargs = mock_create.call_args[1]
        assert call_kwargs["min_size"] == 2
        assert call_kwargs["max_size"] == 10
        assert call_kwargs["command_timeout"] == 60
        assert call_kwargs["init"] is _init_connection

        assert db.pool == mock_pool


@pytest.mark.asyncio
async def test_connect_retry_on_failure():
    """Retries connection on failure with exponential backoff."""
    db = Database()
    mock_pool = MagicMock()

    with (
        patch(
            "hiring_pipeline.core.database.asyncpg.create_pool", new_callable=AsyncMock
        ) as mock_create,
        patch("hiring_pipeline.core.database.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
    ):
        # Fail first attempt, succeed on second
        mock_create.side_effect = [Exception("Connection failed"), mock_pool]

        await db.connect()

        assert mock_create.call_count == 2
        # 2^1 seconds after the first failure
        mock_sleep.assert_called_once_with(2)
        assert db.pool == mock_pool


@pytest.mark.asyncio
async def test_connect_max_retries_exhausted():
    """Exception raised after max retries exhausted."""
    db = Database()

    with (
        patch(
            "hiring_pipeline.core.database.asyncpg.create_pool", new_callable=AsyncMock
        ) as mock_create,
        patch("hiring_pipeline.core.database.asyncio.sleep", new_callable=AsyncMock),
    ):
        mock_create.side_effect = Exception("Connection failed")

        with pytest.raises(Exception, match="Connection failed"):
            await db.connect()

        assert mock_create.call_count == 3


@pytest.mark.asyncio
async def test_init_connection_registers_jsonb_codec():
    """JSONB columns are encoded and decoded with the json module."""
    conn = MagicMock()
    conn.set_type_codec = AsyncMock()

    await _init_connection(conn)

    conn.set_type_codec.assert_called_once_with(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


@pytest.mark.asyncio
async def test_disconnect_closes_pool():
    """Disconnect closes pool gracefully."""
    db = Database()
    mock_pool = MagicMock()
    mock_pool.close = AsyncMock()
    db.pool = mock_pool

    await db.disconnect()

    mock_pool.close.assert_called_once()


@pytest.mark.asyncio
async def test_disconnect_when_no_pool():
    """Disconnect handles missing pool gracefully."""
    db = Database()
    db.pool = None

    await db.disconnect()


@pytest.mark.asyncio
async def test_execute_success():
    """Execute runs query successfully."""
    db = Database()
    mock_conn = MagicMock()
    mock_conn.execute = AsyncMock(return_value="UPDATE 1")
    db.pool = _pool_with(mock_conn)

    result = await db.execute("UPDATE jobs SET title = $1", "test")

    assert result == "UPDATE 1"
    mock_conn.execute.assert_called_once_with("UPDATE jobs SET title = $1", "test")


@pytest.mark.asyncio
async def test_execute_no_pool_raises_error():
    """Execute raises RuntimeError when pool not initialized."""
    db = Database()
    db.pool = None

    with pytest.raises(RuntimeError, match="Database pool not initialized"):
        await db.execute("SELECT 1")


@pytest.mark.asyncio
async def test_fetch_success():
    """Fetch returns multiple rows."""
    db = Database()
    mock_conn = MagicMock()
    mock_rows = [{"id": 1}, {"id": 2}]
    mock_conn.fetch = AsyncMock(return_value=mock_rows)
    db.pool = _pool_with(mock_conn)

    result = await db.fetch("SELECT * FROM jobs WHERE status = $1", "active")

    assert result == mock_rows
    mock_conn.fetch.assert_called_once_with("SELECT * FROM jobs WHERE status = $1", "active")


@pytest.mark.asyncio
async def test_fetchrow_success():
    """Fetchrow returns single row."""
    db = Database()
    mock_conn = MagicMock()
    mock_row = {"id": 1, "name": "test"}
    mock_conn.fetchrow = AsyncMock(return_value=mock_row)
    db.pool = _pool_with(mock_conn)

    result = await db.fetchrow("SELECT * FROM jobs WHERE job_id = $1", 1)

    assert result == mock_row
    mock_conn.fetchrow.assert_called_once_with("SELECT * FROM jobs WHERE job_id = $1", 1)


@pytest.mark.asyncio
async def test_fetchval_success():
    """Fetchval returns single value."""
    db = Database()
    mock_conn = MagicMock()
    mock_conn.fetchval = AsyncMock(return_value=42)
    db.pool = _pool_with(mock_conn)

    result = await db.fetchval("SELECT COUNT(*) FROM jobs")

    assert result == 42
    mock_conn.fetchval.assert_called_once_with("SELECT COUNT(*) FROM jobs")


@pytest.mark.asyncio
async def test_transaction_yields_connection_inside_transaction():
    """transaction() opens a transaction on the acquired connection."""
    db = Database()
    mock_conn = MagicMock()
    mock_conn.transaction = MagicMock(return_value=AsyncContextManager(None))
    db.pool = _pool_with(mock_conn)

    async with db.transaction() as conn:
        assert conn is mock_conn

    mock_conn.transaction.assert_called_once()


@pytest.mark.asyncio
async def test_transaction_no_pool_raises_error():
    """transaction() raises RuntimeError when pool not initialized."""
    db = Database()

    with pytest.raises(RuntimeError, match="Database pool not initialized"):
        async with db.transaction():
            pass
