"""
Unit tests for core.pool module.

Tests:
- Configuration models and the password-from-environment validator
- connect() retry with backoff and idempotency
- Read operations retrying on connection-level errors only
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest
from pydantic import ValidationError

from relayshadow.core.exceptions import ConnectionPoolError
from relayshadow.core.pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)


@pytest.fixture(autouse=True)
def _db_password(monkeypatch):
    monkeypatch.setenv("DB_PASSWORD", "test_pass")


def _connected_pool(conn, **retry):
    pool = Pool(PoolConfig(retry=PoolRetryConfig(initial_delay=0.1, max_delay=0.1, **retry)))
    inner = MagicMock()

    @asynccontextmanager
    async def acquire():
        yield conn

    inner.acquire = acquire
    pool._pool = inner
    pool._is_connected = True
    return pool


# ============================================================================
# Configuration
# ============================================================================


class TestDatabaseConfig:
    """DatabaseConfig Pydantic model."""

    def test_defaults(self):
        config = DatabaseConfig.model_validate({})
        assert config.host == "localhost"
        assert config.port == 5432
        assert config.database == "relayshadow"
        assert config.password.get_secret_value() == "test_pass"

    def test_custom_password_env(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_PW", "other")
        config = DatabaseConfig.model_validate({"password_env": "ANALYTICS_PW"})
        assert config.password.get_secret_value() == "other"

    def test_password_missing_raises(self, monkeypatch):
        monkeypatch.delenv("DB_PASSWORD", raising=False)
        with pytest.raises(ValidationError, match="DB_PASSWORD"):
            DatabaseConfig.model_validate({})

    @pytest.mark.parametrize("port", [0, 70000])
    def test_invalid_port(self, port):
        with pytest.raises(ValidationError):
            DatabaseConfig(port=port, password="x")


class TestLimitsAndRetry:
    """Pool limit, timeout, retry and server settings models."""

    def test_limits_defaults(self):
        config = PoolLimitsConfig()
        assert config.min_size == 1
        assert config.max_size == 10

    def test_max_gte_min(self):
        with pytest.raises(ValidationError, match="max_size"):
            PoolLimitsConfig(min_size=10, max_size=5)

    def test_timeouts_defaults(self):
        assert PoolTimeoutsConfig().acquisition == 10.0

    def test_max_delay_gte_initial(self):
        with pytest.raises(ValidationError):
            PoolRetryConfig(initial_delay=5.0, max_delay=2.0)

    def test_server_settings_defaults(self):
        config = ServerSettingsConfig()
        assert config.application_name == "relayshadow"
        assert config.timezone == "UTC"


class TestRetryDelay:
    """Backoff delay computation."""

    def test_exponential(self):
        pool = Pool(PoolConfig(retry=PoolRetryConfig(initial_delay=1.0, max_delay=5.0)))
        assert [pool._retry_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_linear(self):
        retry = PoolRetryConfig(initial_delay=1.0, max_delay=10.0, exponential_backoff=False)
        pool = Pool(PoolConfig(retry=retry))
        assert [pool._retry_delay(i) for i in range(3)] == [1.0, 2.0, 3.0]


# ============================================================================
# Lifecycle
# ============================================================================


class TestFactories:
    """Pool.from_dict() and from_yaml()."""

    def test_from_dict(self):
        pool = Pool.from_dict({"database": {"host": "db", "database": "analytics"}})
        assert pool.config.database.host == "db"
        assert pool.is_connected is False

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "pool.yaml"
        path.write_text("database:\n  host: yaml-host\nlimits:\n  max_size: 3\n")
        pool = Pool.from_yaml(str(path))
        assert pool.config.database.host == "yaml-host"
        assert pool.config.limits.max_size == 3


class TestConnect:
    """Pool.connect() and close()."""

    async def test_success(self):
        pool = Pool()
        with patch("asyncpg.create_pool", new_callable=AsyncMock, return_value=MagicMock()) as mock:
            await pool.connect()
            await pool.connect()
        assert pool.is_connected is True
        mock.assert_awaited_once()

    async def test_retry_then_success(self):
        pool = Pool(PoolConfig(retry=PoolRetryConfig(initial_delay=0.1, max_delay=0.1)))
        calls = 0

        async def create(**kwargs):
            nonlocal calls
            calls += 1
            if calls < 2:
                raise ConnectionError("refused")
            return MagicMock()

        with (
            patch("asyncpg.create_pool", side_effect=create),
            patch("relayshadow.core.pool.asyncio.sleep", new_callable=AsyncMock),
        ):
            await pool.connect()
        assert calls == 2
        assert pool.is_connected is True

    async def test_max_retries_exceeded(self):
        pool = Pool(PoolConfig(retry=PoolRetryConfig(max_attempts=2)))
        with (
            patch("asyncpg.create_pool", new_callable=AsyncMock, side_effect=OSError("down")),
            patch("relayshadow.core.pool.asyncio.sleep", new_callable=AsyncMock),
            pytest.raises(ConnectionPoolError, match="2 attempts"),
        ):
            await pool.connect()
        assert pool.is_connected is False

    async def test_close(self):
        pool = Pool()
        inner = MagicMock()
        inner.close = AsyncMock()
        pool._pool = inner
        pool._is_connected = True
        await pool.close()
        await pool.close()
        inner.close.assert_awaited_once()
        assert pool.is_connected is False

    def test_acquire_not_connected_raises(self):
        with pytest.raises(RuntimeError, match="not connected"):
            Pool().acquire()


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    """fetch(), fetchrow() and fetchval() with connection-level retry."""

    async def test_fetch(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[{"url": "wss://a.example"}])
        pool = _connected_pool(conn)
        rows = await pool.fetch("SELECT 1", 5, timeout=2.0)
        assert rows == [{"url": "wss://a.example"}]
        conn.fetch.assert_awaited_once_with("SELECT 1", 5, timeout=2.0)

    async def test_fetchval(self):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=42)
        assert await _connected_pool(conn).fetchval("SELECT 42") == 42

    async def test_retries_interface_error(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=[asyncpg.InterfaceError("lost"), {"n": 1}])
        pool = _connected_pool(conn)
        with patch("relayshadow.core.pool.asyncio.sleep", new_callable=AsyncMock):
            row = await pool.fetchrow("SELECT 1")
        assert row == {"n": 1}
        assert conn.fetchrow.await_count == 2

    async def test_exhausted_retries_raise(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=asyncpg.InterfaceError("lost"))
        pool = _connected_pool(conn, max_attempts=2)
        with (
            patch("relayshadow.core.pool.asyncio.sleep", new_callable=AsyncMock),
            pytest.raises(ConnectionPoolError),
        ):
            await pool.fetch("SELECT 1")
        assert conn.fetch.await_count == 2

    async def test_query_errors_not_retried(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=asyncpg.UndefinedTableError("missing"))
        pool = _connected_pool(conn)
        with pytest.raises(asyncpg.UndefinedTableError):
            await pool.fetch("SELECT * FROM nope")
        assert conn.fetch.await_count == 1
