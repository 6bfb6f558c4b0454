"""
Read facade over the external analytics store.

The analytics tables (``relay_recommendations``, ``relay_publisher_weights``,
``relay_analytics``, ``events``, ``events_relays``) are produced by a
separate batch pipeline; RelayShadow only reads them. ``Store`` owns a
private [Pool][relayshadow.core.pool.Pool], applies the configured query
timeout, and converts driver failures into
[StoreQueryError][relayshadow.core.exceptions.StoreQueryError] so request
handlers deal with a single error type.

All domain SQL lives in
[relayshadow.services.common.queries][relayshadow.services.common.queries],
not here.

Example:
    store = Store.from_yaml("config/store.yaml")

    async with store:
        rows = await store.fetch("SELECT url FROM relay_recommendations")
"""

from __future__ import annotations

from typing import Any

import asyncpg
from pydantic import BaseModel, Field, field_validator

from .exceptions import StoreQueryError
from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS = 0.1


class StoreTimeoutsConfig(BaseModel):
    """Timeout settings for store queries (in seconds, None = no limit)."""

    query: float | None = Field(default=30.0, description="Query timeout (seconds, None=infinite)")

    @field_validator("query", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout: None (infinite) or >= 0.1 seconds."""
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the store facade."""

    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


class Store:
    """Analytics store facade.

    Uses composition with a private ``Pool``. Implements the async context
    manager protocol for pool lifecycle management.

    Raises:
        StoreQueryError: From every query method when the driver reports a
            query error, a lost connection, or a timeout.
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @property
    def config(self) -> StoreConfig:
        """The store configuration (read-only)."""
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        """Read-only access to the underlying pool configuration."""
        return self._pool.config

    @classmethod
    def from_yaml(cls, config_path: str) -> Store:
        """Create a Store from a YAML file with a ``pool`` key and optional
        ``timeouts``."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Store:
        """Create a Store from a configuration dictionary.

        The ``pool`` key builds the Pool; remaining keys become
        [StoreConfig][relayshadow.core.store.StoreConfig] fields.
        """
        pool = Pool.from_dict(config_dict["pool"]) if "pool" in config_dict else None
        store_config_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_config_dict) if store_config_dict else None
        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Query Facade
    # -------------------------------------------------------------------------

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._config.timeouts.query

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Execute a query and return all rows."""
        try:
            return await self._pool.fetch(query, *args, timeout=self._timeout(timeout))
        except (asyncpg.PostgresError, OSError, TimeoutError) as e:
            self._logger.error("query_error", operation="fetch", error=str(e))
            raise StoreQueryError(f"fetch failed: {e}") from e

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        """Execute a query and return the first row."""
        try:
            return await self._pool.fetchrow(query, *args, timeout=self._timeout(timeout))
        except (asyncpg.PostgresError, OSError, TimeoutError) as e:
            self._logger.error("query_error", operation="fetchrow", error=str(e))
            raise StoreQueryError(f"fetchrow failed: {e}") from e

    async def fetchval(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        """Execute a query and return the first column of the first row."""
        try:
            return await self._pool.fetchval(query, *args, timeout=self._timeout(timeout))
        except (asyncpg.PostgresError, OSError, TimeoutError) as e:
            self._logger.error("query_error", operation="fetchval", error=str(e))
            raise StoreQueryError(f"fetchval failed: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect the underlying pool. Idempotent."""
        await self._pool.connect()

    async def close(self) -> None:
        """Close the underlying pool. Idempotent."""
        await self._pool.close()

    async def __aenter__(self) -> Store:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        return f"Store(host={db.host}, database={db.database}, connected={self._pool.is_connected})"
