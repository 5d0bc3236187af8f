"""
Sender-side protocol state machine.

transition() is pure: it takes an event, updates the ClientConnection it owns
and returns the side effects the connection driver must perform. No sockets,
timers or files are touched here, so every path can be exercised with
synthetic events.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

from common.constants import (
    AUTH_FAILURE_CLOSE_DELAY_SECONDS,
    DEFAULT_CLIENT_NAME,
    INVALID_PASSWORD_MESSAGE,
    METADATA_TO_PAYLOAD_DELAY_SECONDS,
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
from common.types import ClientConnection, ConnectionState, TransferSession


# Events

@dataclass(frozen=True)
class ControlReceived:
    message: ControlMessage


@dataclass(frozen=True)
class PayloadReceived:
    size: int


@dataclass(frozen=True)
class MalformedFrame:
    reason: str


@dataclass(frozen=True)
class MetadataSent:
    pass


@dataclass(frozen=True)
class PayloadSent:
    byte_count: int


@dataclass(frozen=True)
class PayloadFailed:
    reason: str


@dataclass(frozen=True)
class ConnectionLost:
    pass


SenderEvent = Union[
    ControlReceived, PayloadReceived, MalformedFrame,
    MetadataSent, PayloadSent, PayloadFailed, ConnectionLost,
]


# Effects

@dataclass(frozen=True)
class SendControl:
    message: ControlMessage


@dataclass(frozen=True)
class SendPayload:
    delay: float


@dataclass(frozen=True)
class CloseConnection:
    delay: float = 0.0


@dataclass(frozen=True)
class ResetInactivityTimer:
    pass


@dataclass(frozen=True)
class TransferCompleted:
    client_name: str
    save_path: Optional[str]


@dataclass(frozen=True)
class ProtocolViolation:
    reason: str


SenderEffect = Union[SendControl, SendPayload, CloseConnection, ResetInactivityTimer, TransferCompleted, ProtocolViolation]


@dataclass(frozen=True)
class Transition:
    state: ConnectionState
    effects: List[SenderEffect] = field(default_factory=list)


class SenderStateMachine:
    """
    Drives one client connection through handshake, payload and acknowledgment.

    Connections to a password-protected session start in AwaitingPassword
    until the ready message arrives.

    Args:
        session: Shared session (read-only here: name, size, password)
        connection: Per-connection state owned by this machine
        metadata_delay: Pause between the metadata frame and the payload frame
        auth_failure_close_delay: Grace period letting the error frame flush before closing
    """

    def __init__(
        self,
        session: TransferSession,
        connection: Optional[ClientConnection] = None,
        metadata_delay: float = METADATA_TO_PAYLOAD_DELAY_SECONDS,
        auth_failure_close_delay: float = AUTH_FAILURE_CLOSE_DELAY_SECONDS
    ):
        self.session = session
        self.connection = connection or ClientConnection()
        self.metadata_delay = metadata_delay
        self.auth_failure_close_delay = auth_failure_close_delay
        if session.requires_password and self.connection.state is ConnectionState.AWAITING_READY:
            self.connection.state = ConnectionState.AWAITING_PASSWORD

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    def transition(self, event: SenderEvent) -> Transition:
        """
        Apply one event.

        Args:
            event: Event observed by the connection driver

        Returns:
            The new state and the effects to perform, in order
        """
        conn = self.connection

        if conn.state.is_terminal:
            return Transition(conn.state)

        if isinstance(event, ConnectionLost):
            return self._move(ConnectionState.CLOSED)

        if isinstance(event, MalformedFrame):
            return self._stay(ProtocolViolation(f"Malformed frame ignored: {event.reason}"))

        if isinstance(event, PayloadReceived):
            return self._stay(ProtocolViolation(
                f"Unexpected payload frame ({event.size} bytes) from receiver ignored"
            ))

        if isinstance(event, ControlReceived):
            return self._on_control(event.message)

        if isinstance(event, MetadataSent):
            if conn.state is not ConnectionState.SENDING_METADATA:
                return self._stay()
            return self._move(ConnectionState.STREAMING, SendPayload(delay=self.metadata_delay))

        if isinstance(event, PayloadSent):
            if conn.state is not ConnectionState.STREAMING:
                return self._stay()
            conn.bytes_sent = event.byte_count
            return self._move(ConnectionState.AWAITING_ACK)

        if isinstance(event, PayloadFailed):
            return self._move(
                ConnectionState.ERRORED,
                ProtocolViolation(f"Payload send failed: {event.reason}"),
                CloseConnection(),
            )

        return self._stay()

    def _on_control(self, message: ControlMessage) -> Transition:
        conn = self.connection

        if isinstance(message, (PingMessage, PongMessage)):
            return self._stay()

        if isinstance(message, ReadyMessage):
            if conn.state not in (ConnectionState.AWAITING_READY, ConnectionState.AWAITING_PASSWORD):
                return self._stay(ProtocolViolation(f"Duplicate ready in state {conn.state.value}"))
            return self._on_ready(message)

        if isinstance(message, ReceivedMessage):
            return self._on_received(message)

        return self._stay(ProtocolViolation(f"Unexpected '{message.type}' message from receiver"))

    def _on_ready(self, message: ReadyMessage) -> Transition:
        conn = self.connection
        conn.client_name = message.client_name or DEFAULT_CLIENT_NAME

        if not self.session.check_password(message.password):
            return self._move(
                ConnectionState.ERRORED,
                SendControl(ErrorMessage(message=INVALID_PASSWORD_MESSAGE)),
                CloseConnection(delay=self.auth_failure_close_delay),
            )

        metadata = MetadataMessage(file_name=self.session.file_name, file_size=self.session.file_size)
        return self._move(ConnectionState.SENDING_METADATA, SendControl(metadata))

    def _on_received(self, message: ReceivedMessage) -> Transition:
        conn = self.connection
        expected = self.session.file_size

        if conn.state is not ConnectionState.AWAITING_ACK or conn.bytes_sent != expected:
            return self._stay(ProtocolViolation(
                f"Acknowledgment received before payload was streamed "
                f"(state={conn.state.value}, sent={conn.bytes_sent}/{expected})"
            ))

        if message.bytes_received is not None and message.bytes_received != expected:
            return self._stay(ProtocolViolation(
                f"Acknowledgment reports {message.bytes_received} bytes, expected {expected}"
            ))

        client_name = message.client_name or conn.client_name or DEFAULT_CLIENT_NAME
        return self._move(
            ConnectionState.CLOSED,
            TransferCompleted(client_name=client_name, save_path=message.save_path),
            ResetInactivityTimer(),
            CloseConnection(),
        )

    def _move(self, state: ConnectionState, *effects: SenderEffect) -> Transition:
        self.connection.state = state
        return Transition(state, list(effects))

    def _stay(self, *effects: SenderEffect) -> Transition:
        return Transition(self.connection.state, list(effects))
