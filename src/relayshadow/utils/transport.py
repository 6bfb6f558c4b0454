"""WebSocket transport for relay connections.

[open_socket][relayshadow.utils.transport.open_socket] opens one aiohttp
WebSocket per relay and wraps it in a
[RelaySocket][relayshadow.utils.transport.RelaySocket] exposing exactly
what the network layer needs: ``send`` a text frame, ``recv`` the next
text frame (``None`` once the stream has ended), and ``close``.

The network layer depends only on the
[Connector][relayshadow.utils.transport.Connector] signature, so tests
inject in-memory sockets in place of real WebSockets.

Note:
    With ``allow_insecure=True`` the TLS context accepts any certificate.
    This is meant for relays with self-signed or expired certificates and
    disables man-in-the-middle protection for those connections.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from collections.abc import Awaitable, Callable
from typing import Final, Protocol

import aiohttp

from relayshadow.core.exceptions import ConnectionFailure, RelayTimeoutError


DEFAULT_TIMEOUT: Final[float] = 10.0
_WS_HEARTBEAT: Final[float] = 30.0
_WS_CLOSE_TIMEOUT: Final[float] = 5.0
_MAX_MSG_SIZE: Final[int] = 4 * 1024 * 1024


logger = logging.getLogger("utils.transport")


class FrameSocket(Protocol):
    """Minimal text-frame duplex stream used by the network layer."""

    async def send(self, data: str) -> None: ...

    async def recv(self) -> str | None: ...

    async def close(self) -> None: ...


Connector = Callable[[str, float], Awaitable[FrameSocket]]


class RelaySocket:
    """A text-frame view over an aiohttp WebSocket and its session.

    The session is owned by the socket and closed with it.
    """

    __slots__ = ("_close_timeout", "_session", "_ws")

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession,
        close_timeout: float = _WS_CLOSE_TIMEOUT,
    ) -> None:
        self._ws = ws
        self._session = session
        self._close_timeout = close_timeout

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, data: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionResetError: If the socket is already closed.
        """
        if self._ws.closed:
            raise ConnectionResetError("websocket is closed")
        await self._ws.send_str(data)

    async def recv(self) -> str | None:
        """Receive the next text frame, or ``None`` when the stream ends.

        Binary frames are decoded as UTF-8; undecodable ones are skipped.
        """
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return str(msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                try:
                    return bytes(msg.data).decode("utf-8")
                except UnicodeDecodeError:
                    logger.debug("binary_frame_skipped size=%d", len(msg.data))
                    continue
            # CLOSE, CLOSING, CLOSED, ERROR -> stream ended
            return None

    async def close(self) -> None:
        """Close the WebSocket and its session, bounded by the close timeout."""
        with contextlib.suppress(aiohttp.ClientError, OSError, TimeoutError):
            await asyncio.wait_for(self._ws.close(), timeout=self._close_timeout)
        with contextlib.suppress(aiohttp.ClientError, OSError, TimeoutError):
            await asyncio.wait_for(self._session.close(), timeout=self._close_timeout)


def _insecure_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def open_socket(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    *,
    allow_insecure: bool = False,
) -> RelaySocket:
    """Open a WebSocket to *url* within *timeout* seconds.

    Args:
        url: ``ws://`` or ``wss://`` relay URL.
        timeout: Bound on the whole opening handshake.
        allow_insecure: Skip TLS certificate verification.

    Raises:
        RelayTimeoutError: If the handshake does not complete in time.
        ConnectionFailure: On any other network, TLS, or handshake failure.
        asyncio.CancelledError: If cancelled; the session is closed first.
    """
    connector = aiohttp.TCPConnector(ssl=_insecure_ssl_context() if allow_insecure else True)
    session = aiohttp.ClientSession(connector=connector)

    try:
        ws = await asyncio.wait_for(
            session.ws_connect(url, heartbeat=_WS_HEARTBEAT, max_msg_size=_MAX_MSG_SIZE),
            timeout=timeout,
        )
    except TimeoutError:
        await session.close()
        logger.debug("ws_connect_timeout url=%s timeout=%s", url, timeout)
        raise RelayTimeoutError(f"connect to {url} timed out after {timeout}s") from None
    except asyncio.CancelledError:
        await session.close()
        raise
    except (aiohttp.ClientError, ssl.SSLError, OSError) as e:
        await session.close()
        logger.debug("ws_connect_failed url=%s error=%s", url, str(e))
        raise ConnectionFailure(url, str(e) or type(e).__name__) from e

    return RelaySocket(ws, session)


def make_connector(*, allow_insecure: bool = False) -> Connector:
    """Return a [Connector][relayshadow.utils.transport.Connector] bound to a TLS policy."""

    async def _connect(url: str, timeout: float) -> FrameSocket:  # noqa: ASYNC109
        return await open_socket(url, timeout, allow_insecure=allow_insecure)

    return _connect
