"""Unit tests for core.store module."""

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest
from pydantic import ValidationError

from relayshadow.core.exceptions import StoreQueryError
from relayshadow.core.pool import Pool
from relayshadow.core.store import Store, StoreConfig, StoreTimeoutsConfig


@pytest.fixture(autouse=True)
def _db_password(monkeypatch):
    monkeypatch.setenv("DB_PASSWORD", "test_pass")


@pytest.fixture
def pool():
    pool = MagicMock(spec=Pool)
    pool.fetch = AsyncMock(return_value=[])
    pool.fetchrow = AsyncMock(return_value=None)
    pool.fetchval = AsyncMock(return_value=None)
    pool.connect = AsyncMock()
    pool.close = AsyncMock()
    return pool


class TestStoreTimeoutsConfig:
    """Query timeout validation."""

    def test_default(self):
        assert StoreTimeoutsConfig().query == 30.0

    def test_none_allowed(self):
        assert StoreTimeoutsConfig(query=None).query is None

    def test_too_small(self):
        with pytest.raises(ValidationError, match="Timeout"):
            StoreTimeoutsConfig(query=0.01)


class TestFactories:
    """Store.from_dict() and from_yaml()."""

    def test_from_dict(self):
        store = Store.from_dict({"pool": {"database": {"host": "db"}}, "timeouts": {"query": 5}})
        assert store.pool_config.database.host == "db"
        assert store.config.timeouts.query == 5

    def test_from_dict_without_pool(self):
        store = Store.from_dict({})
        assert store.config == StoreConfig()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("pool:\n  database:\n    database: analytics\n")
        assert Store.from_yaml(str(path)).pool_config.database.database == "analytics"


class TestQueries:
    """Query delegation, timeouts, and error mapping."""

    async def test_fetch_applies_default_timeout(self, pool):
        pool.fetch.return_value = ["row"]
        store = Store(pool=pool)
        assert await store.fetch("SELECT $1", 1) == ["row"]
        pool.fetch.assert_awaited_once_with("SELECT $1", 1, timeout=30.0)

    async def test_explicit_timeout_wins(self, pool):
        store = Store(pool=pool)
        await store.fetchval("SELECT 1", timeout=2.0)
        pool.fetchval.assert_awaited_once_with("SELECT 1", timeout=2.0)

    async def test_fetchrow(self, pool):
        pool.fetchrow.return_value = {"n": 1}
        assert await Store(pool=pool).fetchrow("SELECT 1") == {"n": 1}

    @pytest.mark.parametrize(
        "error",
        [asyncpg.PostgresError("bad"), OSError("reset"), TimeoutError()],
    )
    async def test_errors_become_store_query_error(self, pool, error):
        pool.fetch.side_effect = error
        with pytest.raises(StoreQueryError, match="fetch failed"):
            await Store(pool=pool).fetch("SELECT 1")

    async def test_fetchval_error(self, pool):
        pool.fetchval.side_effect = OSError("reset")
        with pytest.raises(StoreQueryError, match="fetchval failed"):
            await Store(pool=pool).fetchval("SELECT 1")


class TestLifecycle:
    """Context manager delegates to the pool."""

    async def test_context_manager(self, pool):
        async with Store(pool=pool) as store:
            assert isinstance(store, Store)
        pool.connect.assert_awaited_once()
        pool.close.assert_awaited_once()
