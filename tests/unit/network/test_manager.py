"""
Unit tests for network.manager module.

Tests:
- connect() partial success and aggregate failure
- Fixed-delay reconnection after failed opens and remote drops
- Reconnect attempt limit
- remove() and disconnect() never trigger reconnects
- send() and broadcast() error reporting
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from relayshadow.core.exceptions import AggregateConnectionFailure, ConnectionFailure
from relayshadow.network import ConnectionManager


A = "wss://a.example"
B = "wss://b.example"
C = "wss://c.example"


@pytest.fixture
def frames():
    return []


@pytest.fixture
def manager(relay_network, frames):
    return ConnectionManager(
        relay_network.connect,
        connect_timeout=0.5,
        reconnect_delay=0.01,
        on_frame=lambda url, frame: frames.append((url, frame)),
    )


# ============================================================================
# Connect
# ============================================================================


class TestConnect:
    """ConnectionManager.connect()."""

    async def test_all_open(self, manager):
        assert await manager.connect([A, B]) == 2
        assert manager.open_urls == [A, B]
        await manager.disconnect()

    async def test_duplicates_collapsed(self, manager, relay_network):
        assert await manager.connect([A, A, B]) == 2
        assert relay_network.attempts[A] == 1
        await manager.disconnect()

    async def test_partial_failure_is_success(self, manager, relay_network):
        relay_network.unreachable.add(B)
        assert await manager.connect([A, B, C]) == 2
        assert manager.open_urls == [A, C]
        assert manager.is_reconnecting(B)
        await manager.disconnect()

    async def test_all_fail(self, manager, relay_network):
        relay_network.unreachable.update({A, B})
        with pytest.raises(AggregateConnectionFailure) as exc_info:
            await manager.connect([A, B])
        assert set(exc_info.value.failures) == {A, B}
        assert manager.urls == []
        assert not manager.is_reconnecting(A)

    async def test_empty(self, manager):
        with pytest.raises(AggregateConnectionFailure):
            await manager.connect([])

    async def test_bounded_wait_per_endpoint(self, relay_network):
        async def connector(url, timeout):
            if url == B:
                await asyncio.sleep(10)
            return await relay_network.connect(url, timeout)

        manager = ConnectionManager(connector, connect_timeout=0.05, reconnect_delay=5)
        assert await manager.connect([A, B]) == 1
        await manager.disconnect()

    async def test_on_open_called(self, relay_network):
        opened = []

        async def on_open(url):
            opened.append(url)

        manager = ConnectionManager(relay_network.connect, on_open=on_open)
        await manager.connect([A, B])
        assert sorted(opened) == [A, B]
        await manager.disconnect()

    async def test_frames_forwarded(self, manager, relay_network, frames, wait_until):
        await manager.connect([A])
        relay_network.latest(A).push(["EOSE", "s"])
        await wait_until(lambda: frames == [(A, '["EOSE", "s"]')])
        await manager.disconnect()


# ============================================================================
# Reconnect
# ============================================================================


class TestReconnect:
    """Fixed-delay reconnection."""

    async def test_failed_endpoint_retried(self, manager, relay_network, wait_until):
        relay_network.unreachable.add(B)
        await manager.connect([A, B])
        await wait_until(lambda: relay_network.attempts[B] >= 2)
        relay_network.unreachable.discard(B)
        await wait_until(lambda: B in manager.open_urls)
        assert manager.get(B).reconnect_attempts == 0
        await manager.disconnect()

    async def test_remote_drop_reconnects(self, manager, relay_network, wait_until):
        await manager.connect([A, B])
        first = relay_network.latest(A)
        first.drop()
        await wait_until(lambda: len(relay_network.sockets[A]) == 2 and A in manager.open_urls)
        assert relay_network.latest(A) is not first
        assert len(relay_network.sockets[B]) == 1
        await manager.disconnect()

    async def test_attempt_limit(self, relay_network, wait_until):
        manager = ConnectionManager(
            relay_network.connect, reconnect_delay=0.01, max_reconnect_attempts=2
        )
        relay_network.unreachable.add(B)
        await manager.connect([A, B])
        await wait_until(lambda: not manager.is_reconnecting(B))
        assert relay_network.attempts[B] == 3
        await manager.disconnect()

    async def test_reopen_runs_on_open(self, relay_network, wait_until):
        opened = []

        async def on_open(url):
            opened.append(url)

        manager = ConnectionManager(relay_network.connect, reconnect_delay=0.01, on_open=on_open)
        await manager.connect([A])
        relay_network.latest(A).drop()
        await wait_until(lambda: opened == [A, A])
        await manager.disconnect()


# ============================================================================
# Remove / Disconnect
# ============================================================================


class TestDisconnect:
    """Intentional closes never reconnect."""

    async def test_disconnect_closes_everything(self, manager, relay_network):
        await manager.connect([A, B])
        await manager.disconnect()
        assert manager.urls == []
        assert relay_network.latest(A).closed
        assert relay_network.latest(B).closed

    async def test_no_reconnect_after_disconnect(self, manager, relay_network):
        await manager.connect([A])
        await manager.disconnect()
        await asyncio.sleep(0.05)
        assert relay_network.attempts[A] == 1

    async def test_disconnect_cancels_pending_reconnects(self, manager, relay_network):
        relay_network.unreachable.add(B)
        await manager.connect([A, B])
        await manager.disconnect()
        attempts = relay_network.attempts[B]
        await asyncio.sleep(0.05)
        assert relay_network.attempts[B] == attempts
        assert not manager.is_reconnecting(B)

    async def test_disconnect_idempotent(self, manager):
        await manager.connect([A])
        await manager.disconnect()
        await manager.disconnect()

    async def test_remove(self, manager, relay_network):
        await manager.connect([A, B])
        await manager.remove(A)
        await asyncio.sleep(0.05)
        assert manager.urls == [B]
        assert relay_network.attempts[A] == 1
        await manager.disconnect()

    async def test_add(self, manager, relay_network):
        await manager.connect([A])
        assert await manager.add(B) is True
        relay_network.unreachable.add(C)
        assert await manager.add(C) is False
        assert manager.is_reconnecting(C)
        await manager.disconnect()


# ============================================================================
# Sending
# ============================================================================


class TestSending:
    """send() and broadcast()."""

    async def test_send_unknown(self, manager):
        with pytest.raises(ConnectionFailure, match="unknown endpoint"):
            await manager.send(A, "x")

    async def test_broadcast(self, manager, relay_network):
        await manager.connect([A, B])
        relay_network.latest(B).broken = True
        outcome = await manager.broadcast('["CLOSE","s"]')
        assert outcome[A] is None
        assert isinstance(outcome[B], ConnectionFailure)
        assert relay_network.latest(A).sent == ['["CLOSE","s"]']
        await manager.disconnect()

    async def test_broadcast_skips_closed(self, manager, relay_network):
        relay_network.unreachable.add(B)
        await manager.connect([A, B])
        assert list(await manager.broadcast('["CLOSE","s"]')) == [A]
        await manager.disconnect()

    async def test_broadcast_isolates_unexpected_errors(self, manager, relay_network):
        await manager.connect([A, B])
        relay_network.latest(A).send = AsyncMock(side_effect=RuntimeError("encoder crashed"))
        outcome = await manager.broadcast('["CLOSE","s"]')
        assert isinstance(outcome[A], ConnectionFailure)
        assert "encoder crashed" in str(outcome[A])
        assert outcome[B] is None
        assert relay_network.latest(B).sent == ['["CLOSE","s"]']
        await manager.disconnect()
