"""Connection driver: runs a SenderStateMachine over one WebSocket."""

import asyncio
from typing import Callable, Optional, Set

from aiohttp import WSMsgType, web

from common.context import TransferSettings
from common.exceptions import FrameDecodeError
from common.logging_config import get_logger
from common.protocol import ControlMessage, MetadataMessage, PingMessage, decode_frame, encode_control, encode_payload
from common.types import ClientConnection, ConnectionState, TransferSession
from sender.state_machine import (
    CloseConnection,
    ConnectionLost,
    ControlReceived,
    MalformedFrame,
    MetadataSent,
    PayloadFailed,
    PayloadReceived,
    PayloadSent,
    ProtocolViolation,
    ResetInactivityTimer,
    SendControl,
    SenderEffect,
    SenderEvent,
    SenderStateMachine,
    SendPayload,
    TransferCompleted,
)

logger = get_logger(__name__)

SEND_ERRORS = (ConnectionError, RuntimeError)


class SenderConnection:
    """
    Bridges one aiohttp WebSocketResponse and its state machine.

    Reads frames in arrival order, feeds them to the machine and performs
    the returned effects. Failures stay inside this connection.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse,
        session: TransferSession,
        settings: TransferSettings,
        remote_address: str = "unknown",
        on_transfer_complete: Optional[Callable[[TransferCompleted, ClientConnection], None]] = None,
        on_reset_timer: Optional[Callable[[], None]] = None
    ):
        self.ws = ws
        self.session = session
        self.machine = SenderStateMachine(
            session,
            ClientConnection(remote_address=remote_address),
            metadata_delay=settings.metadata_delay,
            auth_failure_close_delay=settings.auth_failure_close_delay,
        )
        self.on_transfer_complete = on_transfer_complete
        self.on_reset_timer = on_reset_timer
        self._tasks: Set[asyncio.Task] = set()

    @property
    def connection(self) -> ClientConnection:
        return self.machine.connection

    @property
    def is_open(self) -> bool:
        return not self.ws.closed

    def _log_prefix(self) -> str:
        conn = self.connection
        return f"[conn={conn.connection_id} peer={conn.remote_address}]"

    async def run(self) -> None:
        """Process incoming frames until the peer or the sender closes the connection."""
        logger.info(f"{self._log_prefix()} Client connected")
        try:
            async for msg in self.ws:
                if msg.type == WSMsgType.BINARY:
                    await self.dispatch(self._event_for(msg.data))
                elif msg.type == WSMsgType.TEXT:
                    await self.dispatch(MalformedFrame("text frames are not part of the protocol"))
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"{self._log_prefix()} Connection error: {self.ws.exception()}")
                    break
        except (ConnectionError, asyncio.TimeoutError) as e:
            logger.warning(f"{self._log_prefix()} Connection error: {e}")
        finally:
            await self.dispatch(ConnectionLost())
            for task in list(self._tasks):
                task.cancel()
            logger.info(
                f"{self._log_prefix()} Connection finished in state {self.machine.state.value} "
                f"(client={self.connection.client_name}, sent={self.connection.bytes_sent} bytes)"
            )

    def _event_for(self, data: bytes) -> SenderEvent:
        try:
            frame = decode_frame(data)
        except FrameDecodeError as e:
            return MalformedFrame(str(e))
        if frame.is_control:
            return ControlReceived(frame.message)
        self.connection.bytes_received += len(frame.payload)
        return PayloadReceived(len(frame.payload))

    async def dispatch(self, event: SenderEvent) -> None:
        """Apply an event and perform the resulting effects in order."""
        transition = self.machine.transition(event)
        for effect in transition.effects:
            await self._perform(effect)

    async def _perform(self, effect: SenderEffect) -> None:
        if isinstance(effect, SendControl):
            if await self.send_control(effect.message) and isinstance(effect.message, MetadataMessage):
                await self.dispatch(MetadataSent())
        elif isinstance(effect, SendPayload):
            self._spawn(self._send_payload(effect.delay))
        elif isinstance(effect, CloseConnection):
            if effect.delay > 0:
                self._spawn(self._close_after(effect.delay))
            else:
                await self.close()
        elif isinstance(effect, ResetInactivityTimer):
            if self.on_reset_timer:
                self.on_reset_timer()
        elif isinstance(effect, TransferCompleted):
            logger.info(f"{self._log_prefix()} File sent successfully to {effect.client_name}")
            if self.on_transfer_complete:
                self.on_transfer_complete(effect, self.connection)
        elif isinstance(effect, ProtocolViolation):
            logger.warning(f"{self._log_prefix()} Protocol violation: {effect.reason}")

    async def send_control(self, message: ControlMessage) -> bool:
        """
        Send one control frame.

        Returns:
            False if the connection is already gone
        """
        try:
            await self.ws.send_bytes(encode_control(message))
            return True
        except SEND_ERRORS as e:
            logger.debug(f"{self._log_prefix()} Send of '{message.type}' failed: {e}")
            return False

    async def send_ping(self) -> bool:
        """Send a keep-alive ping. Returns False if the connection is closed."""
        if self.ws.closed:
            return False
        return await self.send_control(PingMessage())

    async def _send_payload(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.machine.state is not ConnectionState.STREAMING:
            return

        logger.info(
            f"{self._log_prefix()} Sending {self.session.file_name} "
            f"({self.session.file_size} bytes) to {self.connection.client_name}"
        )
        try:
            data = await asyncio.to_thread(self.session.file_path.read_bytes)
            await self.ws.send_bytes(encode_payload(data))
        except (OSError, RuntimeError) as e:
            await self.dispatch(PayloadFailed(str(e)))
            return
        await self.dispatch(PayloadSent(len(data)))

    async def _close_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.close()

    async def close(self) -> None:
        """Close the WebSocket. Safe to call more than once."""
        if not self.ws.closed:
            try:
                await self.ws.close()
            except SEND_ERRORS as e:
                logger.debug(f"{self._log_prefix()} Close failed: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
