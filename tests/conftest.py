"""
Pytest configuration and shared fixtures for RelayShadow tests.

Provides:
- Fixed test keys (``PRIVATE_KEY`` is set for every test)
- An in-memory relay network injected through the connector seam
- A mock analytics store with ``AsyncMock`` query methods
- Factories for signed and unsigned messages and relay records
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from nostr_sdk import Keys

from relayshadow.core.store import Store
from relayshadow.models import RelayRecord, SignedMessage
from relayshadow.utils.signer import sign_message


# Valid secp256k1 test keys (DO NOT USE IN PRODUCTION)
VALID_HEX_KEY = (
    "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"  # pragma: allowlist secret
)
CLIENT_HEX_KEY = "11" * 32  # pragma: allowlist secret


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def _set_private_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set PRIVATE_KEY for every test; clear the client key."""
    monkeypatch.setenv("PRIVATE_KEY", VALID_HEX_KEY)
    monkeypatch.delenv("CLIENT_PRIVATE_KEY", raising=False)


# ============================================================================
# Keys and Messages
# ============================================================================


@pytest.fixture
def dvm_keys() -> Keys:
    return Keys.parse(VALID_HEX_KEY)


@pytest.fixture
def client_keys() -> Keys:
    return Keys.parse(CLIENT_HEX_KEY)


@pytest.fixture
def dvm_pubkey(dvm_keys: Keys) -> str:
    return dvm_keys.public_key().to_hex()


@pytest.fixture
def client_pubkey(client_keys: Keys) -> str:
    return client_keys.public_key().to_hex()


@pytest.fixture
def make_signed() -> Callable[..., SignedMessage]:
    """Factory signing a message with real keys."""

    def _make(
        keys: Keys,
        kind: int,
        content: str = "",
        tags: list[list[str]] | None = None,
        created_at: int | None = None,
    ) -> SignedMessage:
        return sign_message(keys, kind, content, tags or [], created_at)

    return _make


@pytest.fixture
def make_message() -> Callable[..., SignedMessage]:
    """Factory for structurally valid, unsigned messages (placeholder signature)."""

    def _make(
        *,
        id: str = "a" * 64,  # noqa: A002
        pubkey: str = "b" * 64,
        kind: int = 5600,
        tags: list[list[str]] | None = None,
        content: str = "",
        created_at: int = 1_700_000_000,
    ) -> SignedMessage:
        return SignedMessage(
            id=id,
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            tags=tuple(tuple(t) for t in (tags or [])),
            content=content,
            sig="c" * 128,
        )

    return _make


# ============================================================================
# Analytics Store
# ============================================================================


@pytest.fixture
def mock_store() -> MagicMock:
    """Store with async query methods returning no rows by default."""
    store = MagicMock(spec=Store)
    store.fetch = AsyncMock(return_value=[])
    store.fetchrow = AsyncMock(return_value=None)
    store.fetchval = AsyncMock(return_value=None)
    return store


@pytest.fixture
def make_record() -> Callable[..., RelayRecord]:
    """Factory for relay records with healthy defaults."""

    def _make(url: str = "wss://relay.example.com", **overrides: Any) -> RelayRecord:
        values: dict[str, Any] = {
            "overall": 7.0,
            "privacy": 7.0,
            "reliability": 8.0,
            "performance": 7.0,
            "diversity": 6.0,
            "activity": 6.0,
            "publisher_quality": 6.0,
            "uptime": 0.95,
            "avg_rtt": 300.0,
            "is_up": True,
        }
        values.update(overrides)
        return RelayRecord(url=url, **values)

    return _make


# ============================================================================
# In-memory Relay Network
# ============================================================================


class FakeSocket:
    """In-memory text-frame socket attached to a fake relay."""

    def __init__(self, url: str, network: FakeRelayNetwork) -> None:
        self.url = url
        self.sent: list[str] = []
        self.subscriptions: dict[str, list[dict[str, Any]]] = {}
        self.closed = False
        self.broken = False
        self._network = network
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed or self.broken:
            raise OSError("socket closed")
        self.sent.append(data)
        self._network.handle(self, data)

    async def recv(self) -> str | None:
        return await self._inbox.get()

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def push(self, frame: list[Any] | str) -> None:
        """Deliver one frame to the client side."""
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """End the stream from the relay side."""
        self._inbox.put_nowait(None)

    def sent_frames(self, frame_type: str | None = None) -> list[list[Any]]:
        frames = [json.loads(raw) for raw in self.sent]
        return [f for f in frames if frame_type is None or f[0] == frame_type]


def _matches(filters: list[dict[str, Any]], event: dict[str, Any]) -> bool:
    for flt in filters:
        if "kinds" in flt and event["kind"] not in flt["kinds"]:
            continue
        ok = True
        for key, values in flt.items():
            if key.startswith("#"):
                tagged = {t[1] for t in event["tags"] if t and t[0] == key[1:] and len(t) > 1}
                if not tagged & set(values):
                    ok = False
        if ok:
            return True
    return False


class FakeRelayNetwork:
    """A set of fake relays reachable through ``connect`` (a ``Connector``).

    Attributes:
        unreachable: URLs whose connection attempts fail.
        ack: Per-URL answer to ``EVENT`` frames: ``accept`` (default),
            ``reject``, or ``silent`` (no ``OK`` at all).
        sockets: Every socket opened per URL, oldest first.
        attempts: Connection attempts per URL.
    """

    def __init__(self) -> None:
        self.unreachable: set[str] = set()
        self.ack: dict[str, str] = {}
        self.sockets: dict[str, list[FakeSocket]] = {}
        self.attempts: dict[str, int] = {}
        self.published: list[dict[str, Any]] = []

    async def connect(self, url: str, timeout: float) -> FakeSocket:  # noqa: ASYNC109
        self.attempts[url] = self.attempts.get(url, 0) + 1
        if url in self.unreachable:
            raise OSError(f"{url} unreachable")
        socket = FakeSocket(url, self)
        self.sockets.setdefault(url, []).append(socket)
        return socket

    def latest(self, url: str) -> FakeSocket:
        return self.sockets[url][-1]

    def handle(self, socket: FakeSocket, raw: str) -> None:
        frame = json.loads(raw)
        match frame[0]:
            case "REQ":
                socket.subscriptions[frame[1]] = frame[2:]
            case "CLOSE":
                socket.subscriptions.pop(frame[1], None)
            case "EVENT":
                self._on_event(socket, frame[1])

    def _on_event(self, socket: FakeSocket, event: dict[str, Any]) -> None:
        policy = self.ack.get(socket.url, "accept")
        if policy == "silent":
            return
        if policy == "reject":
            socket.push(["OK", event["id"], False, "blocked: test"])
            return
        socket.push(["OK", event["id"], True, ""])
        self.published.append(event)
        for peer in self.sockets.get(socket.url, []):
            if peer.closed:
                continue
            for sub_id, filters in peer.subscriptions.items():
                if _matches(filters, event):
                    peer.push(["EVENT", sub_id, event])


@pytest.fixture
def relay_network() -> FakeRelayNetwork:
    return FakeRelayNetwork()


async def settle(predicate: Callable[[], bool], timeout: float = 2.0) -> None:  # noqa: ASYNC109
    """Yield to the loop until *predicate* holds or *timeout* expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Awaitable helper: ``await wait_until(lambda: cond)``."""
    return settle
