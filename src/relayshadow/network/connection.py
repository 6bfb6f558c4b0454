"""
A single relay endpoint and its full-duplex frame stream.

[RelayConnection][relayshadow.network.connection.RelayConnection] tracks
the endpoint state (``disconnected``, ``connecting``, ``open``,
``closing``), the last error seen, and the reconnect attempt counter. While
open it runs one reader task that hands every inbound text frame, in
arrival order, to the ``on_frame`` callback.

When the stream ends without [close()][relayshadow.network.connection.RelayConnection.close]
having been called, the connection reports itself through ``on_lost`` so
the owning [ConnectionManager][relayshadow.network.manager.ConnectionManager]
can schedule a reconnect.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
from typing import TYPE_CHECKING

from relayshadow.core.exceptions import ConnectionFailure, ConnectivityError, RelayTimeoutError
from relayshadow.core.logger import Logger


if TYPE_CHECKING:
    from collections.abc import Callable

    from relayshadow.utils.transport import Connector, FrameSocket


class ConnectionState(StrEnum):
    """Lifecycle state of one relay endpoint."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class RelayConnection:
    """One relay endpoint owned by a connection manager.

    Attributes:
        url: Endpoint identifier.
        state: Current [ConnectionState][relayshadow.network.connection.ConnectionState].
        last_error: Most recent connect, send, or stream error.
        reconnect_attempts: Reconnect attempts since the last successful open.
    """

    def __init__(
        self,
        url: str,
        connector: Connector,
        *,
        on_frame: Callable[[str, str], None],
        on_lost: Callable[[RelayConnection], None],
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.state = ConnectionState.DISCONNECTED
        self.last_error: BaseException | None = None
        self.reconnect_attempts = 0

        self._connector = connector
        self._on_frame = on_frame
        self._on_lost = on_lost
        self._connect_timeout = connect_timeout
        self._socket: FrameSocket | None = None
        self._reader: asyncio.Task[None] | None = None
        self._logger = Logger("connection_manager")

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def open(self) -> None:
        """Open the stream within the connect timeout and start reading.

        Raises:
            RelayTimeoutError: If the attempt exceeds the connect timeout.
            ConnectionFailure: If the attempt fails for any other reason.
        """
        if self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return

        self.state = ConnectionState.CONNECTING
        try:
            socket = await asyncio.wait_for(
                self._connector(self.url, self._connect_timeout),
                timeout=self._connect_timeout,
            )
        except TimeoutError:
            error: ConnectivityError = RelayTimeoutError(
                f"connect to {self.url} timed out after {self._connect_timeout}s"
            )
            self._fail(error)
            raise error from None
        except ConnectivityError as e:
            self._fail(e)
            raise
        except OSError as e:
            error = ConnectionFailure(self.url, str(e) or type(e).__name__)
            self._fail(error)
            raise error from e
        except asyncio.CancelledError:
            self.state = ConnectionState.DISCONNECTED
            raise

        self._socket = socket
        self.state = ConnectionState.OPEN
        self.last_error = None
        self.reconnect_attempts = 0
        self._reader = asyncio.create_task(self._read_loop(socket), name=f"reader:{self.url}")

    def _fail(self, error: BaseException) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.last_error = error

    async def send(self, frame: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionFailure: If the endpoint is not open or the send fails.
        """
        socket = self._socket
        if socket is None or not self.is_open:
            raise ConnectionFailure(self.url, f"not open ({self.state})")
        try:
            await socket.send(frame)
        except OSError as e:
            self.last_error = e
            raise ConnectionFailure(self.url, f"send failed: {e}") from e

    async def close(self) -> None:
        """Close the stream on purpose. Never triggers ``on_lost``."""
        if self.state is ConnectionState.DISCONNECTED and self._socket is None:
            return

        self.state = ConnectionState.CLOSING
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        socket, self._socket = self._socket, None
        if socket is not None:
            await socket.close()
        self.state = ConnectionState.DISCONNECTED

    async def _read_loop(self, socket: FrameSocket) -> None:
        try:
            while True:
                frame = await socket.recv()
                if frame is None:
                    break
                self._on_frame(self.url, frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # error boundary for this endpoint's stream
            self.last_error = e
            self._logger.warning("stream_error", url=self.url, error=str(e), error_type=type(e).__name__)

        if self.state is not ConnectionState.OPEN or self._socket is not socket:
            return

        self._socket = None
        self._reader = None
        self.state = ConnectionState.DISCONNECTED
        with contextlib.suppress(OSError):
            await socket.close()
        self._logger.warning("relay_disconnected", url=self.url)
        self._on_lost(self)

    def __repr__(self) -> str:
        return f"RelayConnection(url={self.url!r}, state={self.state.value})"
