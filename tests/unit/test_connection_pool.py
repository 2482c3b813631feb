"""
Unit tests for database connection pool

Configuration checks run without a database; the remaining tests use
the PostgreSQL testcontainer.
"""
import asyncio

import pytest
from psycopg import OperationalError

from portfolio_sync.warehouse.connection import DatabaseConnectionPool


@pytest.mark.unit
def test_password_required(monkeypatch):
    """Test that a missing password is rejected"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)

    with pytest.raises(ValueError, match="password"):
        DatabaseConnectionPool(host="localhost")


@pytest.mark.unit
def test_settings_from_environment(monkeypatch):
    """Test that unset arguments fall back to DB_* variables"""
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_NAME", "portfolio_test")
    monkeypatch.setenv("DB_USER", "sync_user")
    monkeypatch.setenv("DB_PASSWORD", "secret")

    pool = DatabaseConnectionPool(timeout=5)

    assert pool.conninfo == (
        "host=db.internal port=6543 dbname=portfolio_test user=sync_user password=secret connect_timeout=5"
    )
    assert pool.is_open is False


@pytest.mark.unit
def test_connection_before_open():
    """Test that using a closed pool raises"""
    pool = DatabaseConnectionPool(password="secret")

    async def use():
        async with pool.get_connection():
            pass

    with pytest.raises(RuntimeError, match="not open"):
        asyncio.run(use())


@pytest.mark.integration
def test_connection_pool_initialization(db_settings):
    """Test that connection pool opens with the configured sizes"""
    async def run():
        pool = DatabaseConnectionPool(**db_settings, min_size=2, max_size=5)
        await pool.open()
        try:
            assert pool.is_open
            assert pool._pool.min_size == 2
            assert pool._pool.max_size == 5
        finally:
            await pool.close()
        assert pool.is_open is False

    asyncio.run(run())


@pytest.mark.integration
def test_execute_query_and_command(db_settings):
    """Test executing queries and commands using the pool"""
    async def run():
        async with DatabaseConnectionPool(**db_settings) as pool:
            result = await pool.execute_query("SELECT 42 AS answer")
            assert result == [{"answer": 42}]

            await pool.execute_command("CREATE TABLE IF NOT EXISTS pool_probe (id INT)")
            await pool.execute_command("TRUNCATE pool_probe")
            rowcount = await pool.execute_command("INSERT INTO pool_probe (id) VALUES (%s), (%s)", (1, 2))
            assert rowcount == 2

        with pytest.raises(RuntimeError):
            await pool.execute_query("SELECT 1")

    asyncio.run(run())


@pytest.mark.integration
def test_open_fails_after_retries():
    """Test that an unreachable database fails after the configured attempts"""
    pool = DatabaseConnectionPool(host="127.0.0.1", port=1, password="secret", timeout=1)

    with pytest.raises(OperationalError, match="after 2 attempts"):
        asyncio.run(pool.open(max_retries=2, retry_delay=0))
