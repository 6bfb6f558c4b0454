"""
Unit tests for network.connection module.

Tests:
- open() success, failure, and timeout state transitions
- Frame delivery in arrival order
- send() on closed or broken sockets
- Remote close reported through on_lost; intentional close is silent
"""

import asyncio

import pytest

from relayshadow.core.exceptions import ConnectionFailure, RelayTimeoutError
from relayshadow.network import ConnectionState, RelayConnection


URL = "wss://a.example"


class Recorder:
    def __init__(self):
        self.frames = []
        self.lost = []

    def on_frame(self, url, frame):
        self.frames.append((url, frame))

    def on_lost(self, conn):
        self.lost.append(conn)


@pytest.fixture
def recorder():
    return Recorder()


def _connection(connector, recorder, timeout=1.0):
    return RelayConnection(
        URL,
        connector,
        on_frame=recorder.on_frame,
        on_lost=recorder.on_lost,
        connect_timeout=timeout,
    )


# ============================================================================
# Opening
# ============================================================================


class TestOpen:
    """RelayConnection.open()."""

    async def test_success(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        assert conn.state is ConnectionState.OPEN
        assert conn.is_open
        assert conn.last_error is None
        await conn.close()

    async def test_open_twice_is_noop(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        await conn.open()
        assert relay_network.attempts[URL] == 1
        await conn.close()

    async def test_failure(self, relay_network, recorder):
        relay_network.unreachable.add(URL)
        conn = _connection(relay_network.connect, recorder)
        with pytest.raises(ConnectionFailure):
            await conn.open()
        assert conn.state is ConnectionState.DISCONNECTED
        assert isinstance(conn.last_error, ConnectionFailure)

    async def test_timeout(self, recorder):
        async def hang(url, timeout):
            await asyncio.sleep(10)

        conn = _connection(hang, recorder, timeout=0.02)
        with pytest.raises(RelayTimeoutError):
            await conn.open()
        assert conn.state is ConnectionState.DISCONNECTED
        assert isinstance(conn.last_error, RelayTimeoutError)


# ============================================================================
# Frames
# ============================================================================


class TestFrames:
    """Inbound and outbound frames."""

    async def test_frames_in_order(self, relay_network, recorder, wait_until):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        socket = relay_network.latest(URL)
        for i in range(5):
            socket.push(["NOTICE", str(i)])
        await wait_until(lambda: len(recorder.frames) == 5)
        assert [f for _, f in recorder.frames] == [f'["NOTICE", "{i}"]' for i in range(5)]
        await conn.close()

    async def test_send(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        await conn.send('["CLOSE","x"]')
        assert relay_network.latest(URL).sent == ['["CLOSE","x"]']
        await conn.close()

    async def test_send_not_open(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        with pytest.raises(ConnectionFailure, match="not open"):
            await conn.send("x")

    async def test_send_failure(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        relay_network.latest(URL).broken = True
        with pytest.raises(ConnectionFailure, match="send failed"):
            await conn.send("x")
        await conn.close()


# ============================================================================
# Closing
# ============================================================================


class TestClose:
    """Remote and intentional close."""

    async def test_remote_close_reports_lost(self, relay_network, recorder, wait_until):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        relay_network.latest(URL).drop()
        await wait_until(lambda: recorder.lost == [conn])
        assert conn.state is ConnectionState.DISCONNECTED
        assert relay_network.latest(URL).closed

    async def test_stream_error_reports_lost(self, recorder, wait_until):
        class FailingSocket:
            async def send(self, data):
                pass

            async def recv(self):
                raise RuntimeError("decoder exploded")

            async def close(self):
                pass

        async def connect(url, timeout):
            return FailingSocket()

        conn = _connection(connect, recorder)
        await conn.open()
        await wait_until(lambda: recorder.lost == [conn])
        assert isinstance(conn.last_error, RuntimeError)

    async def test_intentional_close_is_silent(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.open()
        await conn.close()
        await asyncio.sleep(0.02)
        assert recorder.lost == []
        assert conn.state is ConnectionState.DISCONNECTED
        assert relay_network.latest(URL).closed

    async def test_close_idempotent(self, relay_network, recorder):
        conn = _connection(relay_network.connect, recorder)
        await conn.close()
        await conn.open()
        await conn.close()
        await conn.close()
        assert conn.state is ConnectionState.DISCONNECTED

    def test_repr(self, relay_network, recorder):
        assert repr(_connection(relay_network.connect, recorder)) == (
            "RelayConnection(url='wss://a.example', state=disconnected)"
        )
