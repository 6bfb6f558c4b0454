"""
Read-side asyncpg pool for the relay analytics store.

RelayShadow never writes to the analytics database; a separate crawler
keeps it populated. This module therefore only knows how to open a pool,
run ``fetch``/``fetchrow``/``fetchval`` and close again. Two things are
retried, both with the backoff described by
[PoolRetryConfig][relayshadow.core.pool.PoolRetryConfig]:

* creating the pool, when the server refuses or the network is down;
* a read that lost its connection half way (``InterfaceError``,
  ``ConnectionDoesNotExistError``).

Anything the server reports about the query itself (bad SQL, a missing
view, a statement timeout) surfaces on the first attempt.

Examples:
    ```python
    pool = Pool.from_yaml("config/store.yaml")

    async with pool:
        count = await pool.fetchval("SELECT count(*) FROM relay_recommendations")
    ```

See Also:
    [Store][relayshadow.core.store.Store]: The facade services actually use.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, Literal, TypeVar, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .exceptions import ConnectionPoolError
from .logger import Logger
from .yaml import load_yaml


_T = TypeVar("_T")

_DEFAULT_PASSWORD_ENV = "DB_PASSWORD"  # pragma: allowlist secret

_READ_OPERATIONS = ("fetch", "fetchrow", "fetchval")
_CONNECT_ERRORS = (asyncpg.PostgresError, OSError, ConnectionError)
_LOST_CONNECTION_ERRORS = (asyncpg.InterfaceError, asyncpg.ConnectionDoesNotExistError)


async def _init_connection(conn: asyncpg.Connection[asyncpg.Record]) -> None:
    # tags and metadata columns are stored as JSON arrays/objects
    for codec in ("jsonb", "json"):
        await conn.set_type_codec(
            codec, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Where the analytics database lives and who to log in as.

    Only the *name* of the password variable belongs in YAML. When no
    ``password`` is passed explicitly, the value of ``password_env``
    (``DB_PASSWORD`` unless overridden) must be set in the environment.
    """

    host: str = Field(default="localhost", min_length=1, description="Server host")
    port: int = Field(default=5432, ge=1, le=65535, description="Server port")
    database: str = Field(default="relayshadow", min_length=1, description="Database name")
    user: str = Field(default="postgres", min_length=1, description="Login role")
    password_env: str = Field(
        default=_DEFAULT_PASSWORD_ENV,
        min_length=1,
        description="Name of the environment variable holding the password",
    )
    password: SecretStr = Field(description="Login password, filled in from password_env")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Fill ``password`` from the environment when it was not given."""
        if not isinstance(data, dict) or "password" in data:
            return data
        variable = data.get("password_env", _DEFAULT_PASSWORD_ENV)
        secret = os.getenv(variable)
        if not secret:
            raise ValueError(f"{variable} environment variable not set")
        return {**data, "password": SecretStr(secret)}


class PoolLimitsConfig(BaseModel):
    """How many connections to keep and when to recycle them."""

    min_size: int = Field(default=1, ge=1, le=100, description="Connections kept open")
    max_size: int = Field(default=10, ge=1, le=200, description="Connection ceiling")
    max_queries: int = Field(default=50_000, ge=100, description="Queries served per connection")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Seconds an idle connection survives"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        floor = info.data.get("min_size", 1)
        if v < floor:
            raise ValueError(f"max_size ({v}) must be >= min_size ({floor})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Seconds to wait for a free connection."""

    acquisition: float = Field(default=10.0, ge=0.1, description="Wait for a pooled connection")


class PoolRetryConfig(BaseModel):
    """Backoff between attempts.

    Attempt ``n`` (zero based) waits ``initial_delay * 2**n`` seconds, or
    ``initial_delay * (n + 1)`` with ``exponential_backoff`` off, and never
    more than ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before giving up")
    initial_delay: float = Field(default=1.0, ge=0.1, description="First wait (seconds)")
    max_delay: float = Field(default=10.0, ge=0.1, description="Longest wait (seconds)")
    exponential_backoff: bool = Field(default=True, description="Double instead of adding")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        first = info.data.get("initial_delay", 1.0)
        if v < first:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({first})")
        return v


class ServerSettingsConfig(BaseModel):
    """Session GUCs sent with every new connection."""

    application_name: str = Field(default="relayshadow", description="Shown in pg_stat_activity")
    timezone: str = Field(default="UTC", description="Session time zone")
    statement_timeout: int = Field(
        default=30_000, ge=0, description="Per-statement limit in ms, 0 disables it"
    )

    def as_server_settings(self) -> dict[str, str]:
        return {
            "application_name": self.application_name,
            "timezone": self.timezone,
            "statement_timeout": str(self.statement_timeout),
        }


class PoolConfig(BaseModel):
    """Everything [Pool][relayshadow.core.pool.Pool] needs, one section per concern."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


class Pool:
    """Lazily connected wrapper around ``asyncpg.Pool``.

    Nothing touches the network until [connect()][relayshadow.core.pool.Pool.connect]
    (or ``async with``). Reads acquire a fresh connection per attempt.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected = False
        self._lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        policy = self._config.retry
        factor = 2**attempt if policy.exponential_backoff else attempt + 1
        return float(min(policy.initial_delay * factor, policy.max_delay))

    async def _retrying(
        self,
        action: Callable[[], Awaitable[_T]],
        retry_on: tuple[type[BaseException], ...],
        what: str,
    ) -> _T:
        """Await ``action()`` until it succeeds or the attempts run out."""
        attempts = self._config.retry.max_attempts
        attempt = 0
        while True:
            try:
                return await action()
            except retry_on as e:
                attempt += 1
                if attempt >= attempts:
                    self._logger.error(f"{what}_failed", attempts=attempts, error=str(e))
                    raise ConnectionPoolError(
                        f"{what} failed after {attempts} attempts: {e}"
                    ) from e
                delay = self._retry_delay(attempt - 1)
                self._logger.warning(f"{what}_retry", attempt=attempt, delay=delay, error=str(e))
                await asyncio.sleep(delay)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the pool. A second call on a connected pool does nothing.

        Raises:
            ConnectionPoolError: The server stayed unreachable for every attempt.
        """
        async with self._lock:
            if self._is_connected:
                return
            db = self._config.database
            limits = self._config.limits
            self._logger.info("connection_starting", host=db.host, port=db.port, database=db.database)

            async def create() -> asyncpg.Pool[asyncpg.Record]:
                return await asyncpg.create_pool(
                    host=db.host,
                    port=db.port,
                    database=db.database,
                    user=db.user,
                    password=db.password.get_secret_value(),
                    min_size=limits.min_size,
                    max_size=limits.max_size,
                    max_queries=limits.max_queries,
                    max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
                    timeout=self._config.timeouts.acquisition,
                    init=_init_connection,
                    server_settings=self._config.server_settings.as_server_settings(),
                )

            self._pool = await self._retrying(create, _CONNECT_ERRORS, "connect")
            self._is_connected = True
            self._logger.info("connection_established")

    async def close(self) -> None:
        """Release every connection; safe to call on a closed pool."""
        async with self._lock:
            pool, self._pool = self._pool, None
            self._is_connected = False
            if pool is not None:
                await pool.close()
                self._logger.info("connection_closed")

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow one connection for the duration of an ``async with`` block.

        Raises:
            RuntimeError: [connect()][relayshadow.core.pool.Pool.connect] was never awaited.
        """
        if self._pool is None or not self._is_connected:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _read(
        self,
        operation: Literal["fetch", "fetchrow", "fetchval"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
    ) -> Any:
        if operation not in _READ_OPERATIONS:
            raise ValueError(f"unsupported operation: {operation}")

        async def attempt() -> Any:
            async with self.acquire() as conn:
                return await getattr(conn, operation)(query, *args, timeout=timeout)

        return await self._retrying(attempt, _LOST_CONNECTION_ERRORS, operation)

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """All rows of ``query``."""
        return cast("list[asyncpg.Record]", await self._read("fetch", query, args, timeout))

    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        """First row of ``query``, ``None`` when it returns nothing."""
        return cast("asyncpg.Record | None", await self._read("fetchrow", query, args, timeout))

    async def fetchval(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any:
        """Single value: first column of the first row."""
        return await self._read("fetchval", query, args, timeout)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        return self._config

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        state = "connected" if self._is_connected else "disconnected"
        return f"Pool({db.user}@{db.host}:{db.port}/{db.database}, {state})"
