"""FileReceiver: connects to a sender and saves the shared file."""

import asyncio
import socket
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiohttp

from common.context import RuntimeContext
from common.exceptions import AuthenticationError, FrameDecodeError, ZapShareError
from common.logging_config import get_logger
from common.protocol import decode_frame, encode_control
from common.types import ReceiverState, TransferResult
from receiver.destination import save_to_destination
from receiver.state_machine import (
    CloseConnection,
    ConnectFailed,
    Connected,
    ConnectionLost,
    ControlReceived,
    Fail,
    MalformedFrame,
    PayloadReceived,
    PayloadSaved,
    ReceiverEffect,
    ReceiverEvent,
    ReceiverStateMachine,
    RetryWithPassword,
    SaveFailed,
    SavePayload,
    SendControl,
    StartTransferClock,
    Succeed,
)

logger = get_logger(__name__)

# Called with the number of rejected attempts so far; returns the new password or None to give up
PasswordPrompt = Callable[[int], Awaitable[Optional[str]]]

CONNECT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)
SEND_ERRORS = (aiohttp.ClientError, ConnectionError, RuntimeError)


class _Attempt:
    """Mutable bookkeeping for one connection attempt."""

    def __init__(self):
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.retry = False
        self.save_path: Optional[Path] = None
        self.error: Optional[ZapShareError] = None


class FileReceiver:
    """
    Receives one file from a sender.

    Password rejections are retried in a bounded loop: each retry asks
    password_prompt for a new password and reconnects.
    """

    def __init__(
        self,
        context: RuntimeContext,
        password_prompt: Optional[PasswordPrompt] = None,
        client_name: Optional[str] = None
    ):
        """
        Args:
            context: Runtime context (connect timeout, attempt limit, receive directory)
            password_prompt: Async callable asked for a new password after a rejection
            client_name: Name announced to the sender (defaults to the host name)
        """
        self.context = context
        self.settings = context.settings
        self.password_prompt = password_prompt
        self.client_name = client_name or socket.gethostname() or "Unknown client"
        self._transfer_started: Optional[float] = None

    async def receive(
        self,
        url: str,
        save_name: Optional[str] = None,
        password: Optional[str] = None,
        output_dir: Optional[Path] = None
    ) -> TransferResult:
        """
        Connect to url, run the protocol and save the payload.

        Args:
            url: ws:// or wss:// URL of the sender
            save_name: File name to save as (defaults to the sender's file name)
            password: Password for protected shares
            output_dir: Destination directory (defaults to the per-user receive directory)

        Returns:
            TransferResult describing the saved file

        Raises:
            ServerUnreachableError: If the sender cannot be reached
            AuthenticationError: If the password was rejected too often or not supplied
            ProtocolViolationError: If the sender breaks the protocol
            RemoteError: If the sender reports an error
            TransportError: If the connection drops mid-transfer
        """
        destination = output_dir or self.context.receive_dir
        machine = ReceiverStateMachine(client_name=self.client_name, password=password, save_name=save_name)
        max_attempts = max(1, self.settings.max_password_attempts)

        async with aiohttp.ClientSession() as http:
            attempt_number = 0
            while True:
                attempt_number += 1
                logger.info(f"Connecting to {url} (attempt {attempt_number})")
                attempt = await self._run_attempt(http, url, machine, destination)

                if machine.state is ReceiverState.DONE and attempt.save_path is not None:
                    elapsed = time.monotonic() - (self._transfer_started or time.monotonic())
                    return TransferResult(
                        save_path=attempt.save_path,
                        file_name=machine.file_name or attempt.save_path.name,
                        file_size=machine.bytes_received,
                        elapsed_seconds=elapsed,
                        attempts=attempt_number,
                    )

                if not attempt.retry:
                    raise attempt.error or machine.error or ZapShareError("Transfer did not complete")

                if attempt_number >= max_attempts:
                    raise AuthenticationError(f"Password rejected {attempt_number} time(s); giving up")
                if self.password_prompt is None:
                    raise AuthenticationError("This file is password protected and no password was given")

                new_password = await self.password_prompt(attempt_number)
                if not new_password:
                    raise AuthenticationError("No password entered")
                machine.password = new_password

    async def _run_attempt(
        self,
        http: aiohttp.ClientSession,
        url: str,
        machine: ReceiverStateMachine,
        destination: Path
    ) -> _Attempt:
        attempt = _Attempt()
        try:
            attempt.ws = await asyncio.wait_for(
                http.ws_connect(url, max_msg_size=0, autoping=True),
                timeout=self.settings.connect_timeout,
            )
        except asyncio.TimeoutError:
            await self._dispatch(
                attempt, machine, destination,
                ConnectFailed(f"no response within {self.settings.connect_timeout:g} seconds"),
            )
            return attempt
        except CONNECT_ERRORS as e:
            await self._dispatch(attempt, machine, destination, ConnectFailed(str(e) or type(e).__name__))
            return attempt

        try:
            await self._dispatch(attempt, machine, destination, Connected())
            while not machine.state.is_terminal and not attempt.retry:
                msg = await attempt.ws.receive()
                if msg.type == aiohttp.WSMsgType.BINARY:
                    await self._dispatch(attempt, machine, destination, self._event_for(msg.data))
                elif msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(
                        attempt, machine, destination, MalformedFrame("text frames are not part of the protocol")
                    )
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                                  aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        logger.warning(f"Connection error: {attempt.ws.exception()}")
                    await self._dispatch(attempt, machine, destination, ConnectionLost())
        finally:
            if not attempt.ws.closed:
                await attempt.ws.close()
        return attempt

    @staticmethod
    def _event_for(data: bytes) -> ReceiverEvent:
        try:
            frame = decode_frame(data)
        except FrameDecodeError as e:
            return MalformedFrame(str(e))
        if frame.is_control:
            return ControlReceived(frame.message)
        return PayloadReceived(frame.payload)

    async def _dispatch(
        self,
        attempt: _Attempt,
        machine: ReceiverStateMachine,
        destination: Path,
        event: ReceiverEvent
    ) -> None:
        transition = machine.transition(event)
        for effect in transition.effects:
            await self._perform(attempt, machine, destination, effect)

    async def _perform(
        self,
        attempt: _Attempt,
        machine: ReceiverStateMachine,
        destination: Path,
        effect: ReceiverEffect
    ) -> None:
        if isinstance(effect, SendControl):
            try:
                await attempt.ws.send_bytes(encode_control(effect.message))
            except SEND_ERRORS as e:
                logger.debug(f"Send of '{effect.message.type}' failed: {e}")
                await self._dispatch(attempt, machine, destination, ConnectionLost())
        elif isinstance(effect, StartTransferClock):
            self._transfer_started = time.monotonic()
            logger.info(f"Receiving {machine.file_name} ({machine.file_size} bytes)")
        elif isinstance(effect, SavePayload):
            try:
                path = await asyncio.to_thread(save_to_destination, destination, effect.file_name, effect.data)
            except ZapShareError as e:
                await self._dispatch(attempt, machine, destination, SaveFailed(str(e)))
                return
            await self._dispatch(attempt, machine, destination, PayloadSaved(path))
        elif isinstance(effect, RetryWithPassword):
            logger.warning("Sender rejected the password")
            attempt.retry = True
        elif isinstance(effect, CloseConnection):
            if attempt.ws is not None and not attempt.ws.closed:
                await attempt.ws.close()
        elif isinstance(effect, Fail):
            attempt.error = effect.error
            logger.error(f"Transfer failed: {effect.error}")
        elif isinstance(effect, Succeed):
            attempt.save_path = effect.save_path
