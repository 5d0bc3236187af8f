"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class SendCommand:
    """Share one file."""

    path: str
    password: str | None = None
    secure: bool = False
    tunnel: bool = True
    force_tunnel: bool = False
    command: Literal["send"] = "send"


@dataclass(frozen=True)
class ReceiveCommand:
    """Receive a file from a sender on the local network."""

    host: str
    port: int
    file_name: str | None = None
    password: str | None = None
    output_dir: str | None = None
    command: Literal["receive"] = "receive"


@dataclass(frozen=True)
class GetCommand:
    """Receive a file from a global share link."""

    url: str
    file_name: str | None = None
    password: str | None = None
    output_dir: str | None = None
    command: Literal["get"] = "get"


@dataclass(frozen=True)
class TunnelsCommand:
    """List tunnels recorded in the registry."""

    command: Literal["tunnels"] = "tunnels"


@dataclass(frozen=True)
class TunnelsCloseCommand:
    """Close every recorded tunnel."""

    command: Literal["tunnels-close"] = "tunnels-close"


CommandRequest = (
    SendCommand
    | ReceiveCommand
    | GetCommand
    | TunnelsCommand
    | TunnelsCloseCommand
)
