"""Shared data type definitions (TransferSession, ClientConnection, etc.)."""

import hmac
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from common.constants import INACTIVITY_TIMEOUT_SECONDS


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PublicEndpoint:
    """
    Public URL forwarding to the local listener.
    """
    url: str
    shortened_url: str
    provider: str = "ssh"

    @property
    def share_url(self) -> str:
        return self.shortened_url or self.url


@dataclass
class TransferSession:
    """
    State of one sender-initiated sharing instance.

    The file fields are immutable once the session starts; only the expiry,
    the public endpoint and the completion counter change afterwards.
    """
    file_path: Path
    file_name: str
    file_size: int
    listener_port: int
    http_port: int
    password: Optional[str] = None
    session_id: str = field(default_factory=lambda: secrets.token_hex(8))
    created_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    public_endpoint: Optional[PublicEndpoint] = None
    transfers_completed: int = 0

    def __post_init__(self):
        if self.expires_at is None:
            self.expires_at = self.created_at + timedelta(seconds=INACTIVITY_TIMEOUT_SECONDS)

    @property
    def requires_password(self) -> bool:
        return self.password is not None

    def check_password(self, candidate: Optional[str]) -> bool:
        """
        Check a password supplied by a client.

        Args:
            candidate: Password from the client's ready message (may be None)

        Returns:
            True if the session is open or the password matches
        """
        if self.password is None:
            return True
        if candidate is None:
            return False
        return hmac.compare_digest(self.password.encode('utf-8'), candidate.encode('utf-8'))

    def touch(self, timeout_seconds: float) -> datetime:
        """Push the expiry out to timeout_seconds from now and return it."""
        self.expires_at = utc_now() + timedelta(seconds=timeout_seconds)
        return self.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def set_public_endpoint(self, endpoint: PublicEndpoint) -> None:
        """
        Attach the public endpoint. May happen at most once per session.

        Raises:
            ValueError: If an endpoint was already attached
        """
        if self.public_endpoint is not None:
            raise ValueError(f"Session {self.session_id} already has a public endpoint")
        self.public_endpoint = endpoint

    def clear_public_endpoint(self) -> Optional[PublicEndpoint]:
        """Return the session to local-only mode, handing back the previous endpoint."""
        endpoint, self.public_endpoint = self.public_endpoint, None
        return endpoint


class ConnectionState(str, Enum):
    """Sender-side protocol state of one client connection."""
    AWAITING_READY = "AwaitingReady"
    AWAITING_PASSWORD = "AwaitingPassword"
    SENDING_METADATA = "SendingMetadata"
    STREAMING = "Streaming"
    AWAITING_ACK = "AwaitingAck"
    CLOSED = "Closed"
    ERRORED = "Errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.CLOSED, ConnectionState.ERRORED)


@dataclass
class ClientConnection:
    """
    Per-connection state, owned by exactly one sender state machine.
    """
    connection_id: str = field(default_factory=lambda: secrets.token_hex(4))
    remote_address: str = "unknown"
    state: ConnectionState = ConnectionState.AWAITING_READY
    client_name: Optional[str] = None
    bytes_sent: int = 0
    bytes_received: int = 0


class ReceiverState(str, Enum):
    """Receiver-side protocol state."""
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    AWAITING_METADATA = "AwaitingMetadata"
    RECEIVING = "Receiving"
    ACKNOWLEDGING = "Acknowledging"
    DONE = "Done"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReceiverState.DONE, ReceiverState.FAILED)


@dataclass(frozen=True)
class TransferResult:
    """
    Outcome of a successful receive.
    """
    save_path: Path
    file_name: str
    file_size: int
    elapsed_seconds: float
    attempts: int = 1

    @property
    def throughput_bytes_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return float(self.file_size)
        return self.file_size / self.elapsed_seconds


@dataclass
class TunnelCloseResult:
    """
    Counts from a tunnel teardown. Zero counts mean nothing was open.

    dropped counts registry entries removed without a process to stop.
    """
    closed: int = 0
    failed: int = 0
    dropped: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: 'TunnelCloseResult') -> 'TunnelCloseResult':
        return TunnelCloseResult(
            closed=self.closed + other.closed,
            failed=self.failed + other.failed,
            dropped=self.dropped + other.dropped,
            errors=self.errors + other.errors,
        )
