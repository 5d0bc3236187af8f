"""Transport Listener: accepts WebSocket connections on the sender's data port."""

import asyncio
from typing import Callable, List, Optional, Set

from aiohttp import web

from common.constants import KEEPALIVE_INTERVAL_SECONDS, LISTENER_CLOSE_TIMEOUT_SECONDS, WEBSOCKET_PATH
from common.exceptions import ListenerBindError
from common.logging_config import get_logger
from sender.connection import SenderConnection

logger = get_logger(__name__)

ConnectionFactory = Callable[[web.WebSocketResponse, str], SenderConnection]


class TransportListener:
    """
    Binds one port, upgrades every request on the WebSocket path and hands the
    socket to a fresh SenderConnection produced by the factory.

    Exposes the bound port, a connection-count observable, a keep-alive loop
    and close_all(), which finishes within a bounded time even with slow peers.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        host: str = '0.0.0.0',
        port: int = 0,
        keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
        close_timeout: float = LISTENER_CLOSE_TIMEOUT_SECONDS
    ):
        """
        Args:
            connection_factory: Builds a SenderConnection for (ws, remote_address)
            host: Interface to bind
            port: Port to bind (0 lets the OS choose)
            keepalive_interval: Seconds between ping frames on every open connection
            close_timeout: Upper bound for closing each connection and the server
        """
        self.connection_factory = connection_factory
        self.host = host
        self.port = port
        self.keepalive_interval = keepalive_interval
        self.close_timeout = close_timeout

        self.connections: Set[SenderConnection] = set()
        self._observers: List[Callable[[int], None]] = []
        self._runner: Optional[web.AppRunner] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._closed = False

        self.app = web.Application()
        self.app.router.add_get(WEBSOCKET_PATH, self._handle_websocket)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._closed

    def add_count_observer(self, callback: Callable[[int], None]) -> None:
        """Register a callback invoked with the new connection count on every change."""
        self._observers.append(callback)

    def _notify(self) -> None:
        count = self.connection_count
        for callback in self._observers:
            try:
                callback(count)
            except Exception as e:
                logger.error(f"Connection count observer failed: {e}", exc_info=True)

    async def start(self) -> int:
        """
        Bind the port and start accepting connections.

        Returns:
            The bound port

        Raises:
            ListenerBindError: If the port cannot be bound
        """
        self._runner = web.AppRunner(self.app, handle_signals=False, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise ListenerBindError(f"Cannot bind listener on {self.host}:{self.port}: {e}")

        addresses = self._runner.addresses
        if addresses:
            self.port = addresses[0][1]

        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        logger.info(f"Listener started on {self.host}:{self.port}")
        return self.port

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(compress=False, autoping=True)
        await ws.prepare(request)

        if self._closed:
            await ws.close()
            return ws

        connection = self.connection_factory(ws, request.remote or 'unknown')
        self.connections.add(connection)
        self._notify()
        try:
            await connection.run()
        finally:
            self.connections.discard(connection)
            self._notify()
        return ws

    async def _keepalive_loop(self) -> None:
        """Ping every open connection; drop the ones that fail."""
        while not self._closed:
            await asyncio.sleep(self.keepalive_interval)
            for connection in list(self.connections):
                if not await connection.send_ping():
                    logger.debug(f"Dropping connection {connection.connection.connection_id} from keep-alive set")
                    self.connections.discard(connection)
                    self._notify()

    async def close_all(self) -> None:
        """
        Stop accepting, close every open connection and release the port.

        Each step is bounded by close_timeout. Calling it again is a no-op.
        """
        if self._closed:
            return
        self._closed = True

        if self._keepalive_task:
            self._keepalive_task.cancel()
            await asyncio.gather(self._keepalive_task, return_exceptions=True)

        open_connections = list(self.connections)
        if open_connections:
            logger.info(f"Closing {len(open_connections)} open connection(s)")
            results = await asyncio.gather(
                *(asyncio.wait_for(c.close(), timeout=self.close_timeout) for c in open_connections),
                return_exceptions=True,
            )
            for connection, result in zip(open_connections, results):
                if isinstance(result, Exception):
                    logger.debug(f"Forced close of {connection.connection.connection_id}: {result!r}")

        if self._runner is not None:
            try:
                await asyncio.wait_for(self._runner.cleanup(), timeout=self.close_timeout * 2)
            except asyncio.TimeoutError:
                logger.warning("Listener shutdown timed out; abandoning remaining connections")
            self._runner = None

        logger.info(f"Listener on port {self.port} closed")
