"""
Receiver-side protocol state machine.

Like the sender machine, transition() is pure: the driver in
receiver.client feeds it events and performs the returned effects.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from common.constants import DEFAULT_CLIENT_NAME, INVALID_PASSWORD_MESSAGE
from common.exceptions import (
    DestinationWriteError,
    ProtocolViolationError,
    RemoteError,
    ServerUnreachableError,
    TransportError,
    ZapShareError,
)
from common.protocol import (
    ControlMessage,
    ErrorMessage,
    MetadataMessage,
    PingMessage,
    PongMessage,
    ReadyMessage,
    ReceivedMessage,
)
from common.types import ReceiverState


# Events

@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class ConnectFailed:
    reason: str


@dataclass(frozen=True)
class ControlReceived:
    message: ControlMessage


@dataclass(frozen=True)
class PayloadReceived:
    data: bytes


@dataclass(frozen=True)
class PayloadSaved:
    path: Path


@dataclass(frozen=True)
class SaveFailed:
    reason: str


@dataclass(frozen=True)
class MalformedFrame:
    reason: str


@dataclass(frozen=True)
class ConnectionLost:
    pass


ReceiverEvent = Union[
    Connected, ConnectFailed, ControlReceived, PayloadReceived,
    PayloadSaved, SaveFailed, MalformedFrame, ConnectionLost,
]


# Effects

@dataclass(frozen=True)
class SendControl:
    message: ControlMessage


@dataclass(frozen=True)
class StartTransferClock:
    pass


@dataclass(frozen=True)
class SavePayload:
    data: bytes
    file_name: str


@dataclass(frozen=True)
class RetryWithPassword:
    pass


@dataclass(frozen=True)
class CloseConnection:
    pass


@dataclass(frozen=True)
class Fail:
    error: ZapShareError


@dataclass(frozen=True)
class Succeed:
    save_path: Path


ReceiverEffect = Union[SendControl, StartTransferClock, SavePayload, RetryWithPassword, CloseConnection, Fail, Succeed]


@dataclass(frozen=True)
class Transition:
    state: ReceiverState
    effects: List[ReceiverEffect] = field(default_factory=list)


class ReceiverStateMachine:
    """
    Drives one connection attempt from handshake to acknowledgment.

    After a password rejection the machine returns to Connecting so the
    driver can reconnect with a new password on the same instance.

    Args:
        client_name: Name announced to the sender
        password: Password sent in the ready message
        save_name: File name to save as (defaults to the name the sender announces)
    """

    def __init__(
        self,
        client_name: str = DEFAULT_CLIENT_NAME,
        password: Optional[str] = None,
        save_name: Optional[str] = None
    ):
        self.client_name = client_name
        self.password = password
        self.save_name = save_name
        self.state = ReceiverState.CONNECTING
        self.file_name: Optional[str] = None
        self.file_size: Optional[int] = None
        self.bytes_received = 0
        self.error: Optional[ZapShareError] = None

    def transition(self, event: ReceiverEvent) -> Transition:
        """
        Apply one event.

        Returns:
            The new state and the effects to perform, in order
        """
        if self.state.is_terminal:
            return self._stay()

        if isinstance(event, ConnectionLost):
            if self.state is ReceiverState.CONNECTING:
                return self._stay()
            return self._fail(TransportError("Connection closed before the transfer completed"))

        if isinstance(event, MalformedFrame):
            return self._fail(ProtocolViolationError(f"Malformed frame from sender: {event.reason}"))

        if self.state is ReceiverState.CONNECTING:
            return self._on_connecting(event)

        if isinstance(event, ControlReceived):
            return self._on_control(event.message)

        if isinstance(event, PayloadReceived):
            return self._on_payload(event.data)

        if isinstance(event, PayloadSaved) and self.state is ReceiverState.ACKNOWLEDGING:
            ack = ReceivedMessage(
                client_name=self.client_name,
                save_path=str(event.path),
                bytes_received=self.bytes_received,
            )
            return self._move(ReceiverState.DONE, SendControl(ack), CloseConnection(), Succeed(event.path))

        if isinstance(event, SaveFailed) and self.state is ReceiverState.ACKNOWLEDGING:
            return self._fail(DestinationWriteError(f"Could not save {self.file_name}: {event.reason}"))

        return self._stay()

    def _on_connecting(self, event: ReceiverEvent) -> Transition:
        if isinstance(event, Connected):
            self.state = ReceiverState.CONNECTED
            ready = ReadyMessage(client_name=self.client_name, password=self.password)
            return self._move(ReceiverState.AWAITING_METADATA, SendControl(ready))

        if isinstance(event, ConnectFailed):
            self.state = ReceiverState.FAILED
            self.error = ServerUnreachableError(f"Could not connect to sender: {event.reason}")
            return Transition(self.state, [Fail(self.error)])

        return self._stay()

    def _on_control(self, message: ControlMessage) -> Transition:
        if isinstance(message, PingMessage):
            return self._stay(SendControl(PongMessage()))

        if isinstance(message, PongMessage):
            return self._stay()

        if isinstance(message, ErrorMessage):
            if message.message == INVALID_PASSWORD_MESSAGE and self.state is ReceiverState.AWAITING_METADATA:
                self._reset()
                return self._move(ReceiverState.CONNECTING, CloseConnection(), RetryWithPassword())
            return self._fail(RemoteError(f"Sender reported an error: {message.message}"))

        if isinstance(message, MetadataMessage) and self.state is ReceiverState.AWAITING_METADATA:
            self.file_name = message.file_name
            self.file_size = message.file_size
            return self._move(ReceiverState.RECEIVING, StartTransferClock())

        return self._fail(ProtocolViolationError(
            f"Unexpected '{message.type}' message in state {self.state.value}"
        ))

    def _on_payload(self, data: bytes) -> Transition:
        if self.state is not ReceiverState.RECEIVING:
            return self._fail(ProtocolViolationError(
                f"Payload frame ({len(data)} bytes) received in state {self.state.value}"
            ))

        if len(data) != self.file_size:
            return self._fail(ProtocolViolationError(
                f"Payload size mismatch: expected {self.file_size} bytes, got {len(data)}"
            ))

        self.bytes_received = len(data)
        return self._move(ReceiverState.ACKNOWLEDGING, SavePayload(data, self.save_name or self.file_name))

    def _reset(self) -> None:
        self.file_name = None
        self.file_size = None
        self.bytes_received = 0

    def _fail(self, error: ZapShareError) -> Transition:
        self.error = error
        return self._move(ReceiverState.FAILED, CloseConnection(), Fail(error))

    def _move(self, state: ReceiverState, *effects: ReceiverEffect) -> Transition:
        self.state = state
        return Transition(state, list(effects))

    def _stay(self, *effects: ReceiverEffect) -> Transition:
        return Transition(self.state, list(effects))
