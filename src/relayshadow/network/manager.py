"""
Relay connection manager.

[ConnectionManager][relayshadow.network.manager.ConnectionManager] owns the
set of [RelayConnection][relayshadow.network.connection.RelayConnection]
endpoints of one DVM or client instance:

- ``connect(urls)`` opens every endpoint concurrently with a bounded wait
  each and returns how many opened. Partial success is success; only zero
  open endpoints raises
  [AggregateConnectionFailure][relayshadow.core.exceptions.AggregateConnectionFailure].
- An endpoint that fails to open, or whose stream ends unexpectedly, is
  reopened after a fixed delay by its own task, independently of the
  others. ``max_reconnect_attempts`` bounds the retries (``0`` retries
  forever).
- ``remove(url)`` and ``disconnect()`` close endpoints on purpose; those
  closes never trigger a reconnect. ``disconnect()`` is idempotent.

Per-endpoint failures are logged, never raised, except the aggregate case.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from relayshadow.core.exceptions import AggregateConnectionFailure, ConnectionFailure, ConnectivityError
from relayshadow.core.logger import Logger

from .connection import RelayConnection


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from relayshadow.utils.transport import Connector


DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 5.0


class ConnectionManager:
    """Owns relay endpoints, their connect timeouts, and their reconnect loops.

    Args:
        connector: Opens one socket for a URL within a timeout.
        connect_timeout: Bound on each connection attempt, in seconds.
        reconnect_delay: Fixed delay before each reconnect attempt.
        max_reconnect_attempts: Give up on an endpoint after this many
            failed reconnects (``0`` = unlimited).
        on_frame: Receives ``(url, frame)`` for every inbound frame.
        on_open: Awaited with the URL after every successful open,
            including reopens.
    """

    def __init__(
        self,
        connector: Connector,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = 0,
        on_frame: Callable[[str, str], None] | None = None,
        on_open: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._connector = connector
        self._connect_timeout = connect_timeout
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._on_frame = on_frame
        self._on_open = on_open

        self._connections: dict[str, RelayConnection] = {}
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}
        self._closed = False
        self._logger = Logger("connection_manager")

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def urls(self) -> list[str]:
        """Every managed endpoint, in insertion order."""
        return list(self._connections)

    @property
    def open_urls(self) -> list[str]:
        """Endpoints currently open."""
        return [url for url, conn in self._connections.items() if conn.is_open]

    @property
    def open_count(self) -> int:
        return len(self.open_urls)

    def get(self, url: str) -> RelayConnection | None:
        return self._connections.get(url)

    def is_reconnecting(self, url: str) -> bool:
        task = self._reconnect_tasks.get(url)
        return task is not None and not task.done()

    # -------------------------------------------------------------------------
    # Connect / Disconnect
    # -------------------------------------------------------------------------

    async def connect(self, urls: Iterable[str]) -> int:
        """Open every endpoint in *urls* concurrently.

        Endpoints that fail are logged and scheduled for reconnection.

        Returns:
            Number of the requested endpoints that are open.

        Raises:
            AggregateConnectionFailure: If none of them is open. The failed
                endpoints are dropped rather than retried.
        """
        self._closed = False
        requested = list(dict.fromkeys(urls))
        if not requested:
            raise AggregateConnectionFailure({})

        pending: list[RelayConnection] = []
        for url in requested:
            conn = self._connections.get(url)
            if conn is None:
                conn = self._new_connection(url)
                self._connections[url] = conn
            if not conn.is_open:
                pending.append(conn)

        results = await asyncio.gather(
            *(self._open(conn) for conn in pending),
            return_exceptions=True,
        )

        failures: dict[str, BaseException] = {}
        for conn, result in zip(pending, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures[conn.url] = result
                self._logger.warning(
                    "relay_connect_failed",
                    url=conn.url,
                    error=str(result),
                    error_type=type(result).__name__,
                )

        opened = sum(1 for url in requested if self._connections[url].is_open)
        if opened == 0:
            for url in failures:
                self._connections.pop(url, None)
            raise AggregateConnectionFailure(failures)

        for url in failures:
            self._schedule_reconnect(url)

        self._logger.info("relays_connected", opened=opened, requested=len(requested))
        return opened

    async def add(self, url: str) -> bool:
        """Add and open one endpoint. A failure schedules a reconnect.

        Returns:
            Whether the endpoint is open.
        """
        self._closed = False
        conn = self._connections.get(url)
        if conn is None:
            conn = self._new_connection(url)
            self._connections[url] = conn
        if conn.is_open:
            return True
        try:
            await self._open(conn)
        except ConnectivityError as e:
            self._logger.warning("relay_connect_failed", url=url, error=str(e))
            self._schedule_reconnect(url)
            return False
        return True

    async def remove(self, url: str) -> None:
        """Close and forget one endpoint without reconnecting it."""
        task = self._reconnect_tasks.pop(url, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        conn = self._connections.pop(url, None)
        if conn is not None:
            await conn.close()
            self._logger.info("relay_removed", url=url)

    async def disconnect(self) -> None:
        """Close every endpoint and stop all reconnect loops. Idempotent."""
        self._closed = True

        tasks = list(self._reconnect_tasks.values())
        self._reconnect_tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        connections = list(self._connections.values())
        self._connections.clear()
        if connections:
            await asyncio.gather(*(conn.close() for conn in connections))
            self._logger.info("relays_disconnected", count=len(connections))

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send(self, url: str, frame: str) -> None:
        """Send *frame* to one endpoint.

        Raises:
            ConnectionFailure: If the endpoint is unknown, not open, or the
                send fails.
        """
        conn = self._connections.get(url)
        if conn is None:
            raise ConnectionFailure(url, "unknown endpoint")
        await conn.send(frame)

    async def broadcast(self, frame: str) -> dict[str, ConnectivityError | None]:
        """Send *frame* to every open endpoint; failures are returned, not raised.

        An unexpected error from one endpoint is reported for that endpoint
        as a [ConnectionFailure][relayshadow.core.exceptions.ConnectionFailure]
        and does not affect the others. Cancellation propagates.
        """
        urls = self.open_urls
        results = await asyncio.gather(
            *(self.send(url, frame) for url in urls),
            return_exceptions=True,
        )
        outcome: dict[str, ConnectivityError | None] = {}
        for url, result in zip(urls, results, strict=True):
            if result is None:
                outcome[url] = None
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            if not isinstance(result, ConnectivityError):
                if not isinstance(result, Exception):
                    raise result
                result = ConnectionFailure(url, f"send failed: {type(result).__name__}: {result}")
            self._logger.warning("relay_send_failed", url=url, error=str(result))
            outcome[url] = result
        return outcome

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_connection(self, url: str) -> RelayConnection:
        return RelayConnection(
            url,
            self._connector,
            on_frame=self._dispatch_frame,
            on_lost=self._handle_lost,
            connect_timeout=self._connect_timeout,
        )

    def _dispatch_frame(self, url: str, frame: str) -> None:
        if self._on_frame is not None:
            self._on_frame(url, frame)

    async def _open(self, conn: RelayConnection) -> None:
        await conn.open()
        self._logger.debug("relay_opened", url=conn.url)
        if self._on_open is not None:
            try:
                await self._on_open(conn.url)
            except ConnectivityError as e:
                self._logger.warning("relay_on_open_failed", url=conn.url, error=str(e))

    def _handle_lost(self, conn: RelayConnection) -> None:
        if self._closed or self._connections.get(conn.url) is not conn:
            return
        self._schedule_reconnect(conn.url)

    def _schedule_reconnect(self, url: str) -> None:
        if self._closed or self.is_reconnecting(url):
            return
        self._reconnect_tasks[url] = asyncio.create_task(
            self._reconnect_loop(url), name=f"reconnect:{url}"
        )

    async def _reconnect_loop(self, url: str) -> None:
        try:
            while not self._closed:
                conn = self._connections.get(url)
                if conn is None or conn.is_open:
                    return
                limit = self._max_reconnect_attempts
                if 0 < limit <= conn.reconnect_attempts:
                    self._logger.warning("reconnect_abandoned", url=url, attempts=conn.reconnect_attempts)
                    return

                await asyncio.sleep(self._reconnect_delay)
                if self._closed or self._connections.get(url) is not conn:
                    return

                conn.reconnect_attempts += 1
                attempt = conn.reconnect_attempts
                self._logger.info("reconnect_attempt", url=url, attempt=attempt)
                try:
                    await self._open(conn)
                except ConnectivityError as e:
                    self._logger.warning("reconnect_failed", url=url, attempt=attempt, error=str(e))
                    continue
                self._logger.info("relay_reconnected", url=url, attempts=attempt)
        finally:
            if self._reconnect_tasks.get(url) is asyncio.current_task():
                del self._reconnect_tasks[url]
