"""Tests for the WebSocket transport listener: keep-alive, connection counting and bounded close."""

import asyncio
import time

import aiohttp
import pytest
import pytest_asyncio

from common.protocol import PingMessage, decode_frame
from common.types import ClientConnection, TransferSession
from sender.connection import SenderConnection
from sender.listener import TransportListener

KEEPALIVE = 0.1
CLOSE_TIMEOUT = 0.3


class DeadConnection:
    """Connection stand-in whose keep-alive send always fails."""

    def __init__(self):
        self.connection = ClientConnection(remote_address="10.0.0.9")
        self.pings = 0

    async def send_ping(self) -> bool:
        self.pings += 1
        return False

    async def close(self) -> None:
        pass


async def wait_until(predicate, timeout=3.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def session(sample_file):
    return TransferSession(
        file_path=sample_file,
        file_name=sample_file.name,
        file_size=sample_file.stat().st_size,
        listener_port=0,
        http_port=0,
    )


@pytest_asyncio.fixture
async def listener(session, fast_settings):
    def factory(ws, remote_address):
        return SenderConnection(ws, session, fast_settings, remote_address=remote_address)

    listener = TransportListener(
        factory, host='127.0.0.1', port=0, keepalive_interval=KEEPALIVE, close_timeout=CLOSE_TIMEOUT
    )
    yield listener
    await listener.close_all()


class TestKeepAlive:
    """Test ping frames and dropping of dead connections."""

    @pytest.mark.asyncio
    async def test_ping_frame_arrives_every_interval(self, listener):
        port = await listener.start()

        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(f"ws://127.0.0.1:{port}/") as ws:
                pings = 0
                while pings < 2:
                    msg = await asyncio.wait_for(ws.receive(), timeout=2)
                    assert msg.type == aiohttp.WSMsgType.BINARY
                    frame = decode_frame(msg.data)
                    assert frame.is_control
                    assert isinstance(frame.message, PingMessage)
                    pings += 1

    @pytest.mark.asyncio
    async def test_failed_ping_drops_connection_and_notifies(self, listener):
        counts = []
        listener.add_count_observer(counts.append)
        dead = DeadConnection()
        listener.connections.add(dead)

        await listener.start()
        await wait_until(lambda: listener.connection_count == 0)

        assert dead.pings == 1
        assert counts == [0]


class TestConnectionCount:
    """Test the connection-count observable."""

    @pytest.mark.asyncio
    async def test_count_follows_connect_and_disconnect(self, listener):
        counts = []
        listener.add_count_observer(counts.append)
        port = await listener.start()

        async with aiohttp.ClientSession() as http:
            ws = await http.ws_connect(f"ws://127.0.0.1:{port}/")
            await wait_until(lambda: listener.connection_count == 1)
            await ws.close()
            await wait_until(lambda: listener.connection_count == 0)

        assert counts[0] == 1
        assert counts[-1] == 0


class TestCloseAll:
    """Test bounded shutdown."""

    @pytest.mark.asyncio
    async def test_close_all_is_bounded_with_unresponsive_peer(self, listener):
        port = await listener.start()

        async with aiohttp.ClientSession() as http:
            # autoclose=False and no reads: the close handshake is never answered
            ws = await http.ws_connect(f"ws://127.0.0.1:{port}/", autoclose=False, autoping=False)
            await wait_until(lambda: listener.connection_count == 1)

            started = time.monotonic()
            await listener.close_all()
            elapsed = time.monotonic() - started

            try:
                await asyncio.wait_for(ws.close(), timeout=1)
            except asyncio.TimeoutError:
                pass

        assert elapsed < CLOSE_TIMEOUT * 3 + 1
        assert not listener.is_running

    @pytest.mark.asyncio
    async def test_close_all_twice_is_noop(self, listener):
        await listener.start()

        await listener.close_all()
        await asyncio.wait_for(listener.close_all(), timeout=0.1)
