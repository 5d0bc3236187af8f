"""Wire protocol: tagged frame encoding and control message schemas.

Every WebSocket message is binary and starts with a one-byte tag:

    0x01 CONTROL  remainder is a UTF-8 JSON object with a "type" field
    0x02 PAYLOAD  remainder is the raw file content

Control bodies are validated against the pydantic models below. Anything
else (text messages, empty messages, unknown tags, bodies that fail
validation) is a FrameDecodeError.
"""

import enum
from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from common.constants import DEFAULT_CLIENT_NAME
from common.exceptions import FrameDecodeError


class FrameType(enum.IntEnum):
    CONTROL = 0x01
    PAYLOAD = 0x02


class ControlMessage(BaseModel):
    """Base class for control messages. Field names travel in camelCase."""
    model_config = ConfigDict(populate_by_name=True, extra='ignore', frozen=True)


class ReadyMessage(ControlMessage):
    """receiver -> sender: begin handshake."""
    type: Literal["ready"] = "ready"
    client_name: str = Field(default=DEFAULT_CLIENT_NAME, alias="clientName")
    password: Optional[str] = None


class MetadataMessage(ControlMessage):
    """sender -> receiver: announce the upcoming payload."""
    type: Literal["metadata"] = "metadata"
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize", ge=0)


class ReceivedMessage(ControlMessage):
    """receiver -> sender: acknowledge a successful write."""
    type: Literal["received"] = "received"
    client_name: str = Field(default=DEFAULT_CLIENT_NAME, alias="clientName")
    save_path: Optional[str] = Field(default=None, alias="savePath")
    bytes_received: Optional[int] = Field(default=None, alias="bytesReceived", ge=0)


class ErrorMessage(ControlMessage):
    """sender -> receiver: reject the handshake."""
    type: Literal["error"] = "error"
    message: str


class PingMessage(ControlMessage):
    type: Literal["ping"] = "ping"


class PongMessage(ControlMessage):
    type: Literal["pong"] = "pong"


AnyControlMessage = Annotated[
    Union[ReadyMessage, MetadataMessage, ReceivedMessage, ErrorMessage, PingMessage, PongMessage],
    Field(discriminator="type"),
]

_control_adapter = TypeAdapter(AnyControlMessage)


@dataclass(frozen=True)
class Frame:
    """
    A decoded frame: either a control message or a payload.
    """
    kind: FrameType
    message: Optional[ControlMessage] = None
    payload: bytes = b""

    @property
    def is_control(self) -> bool:
        return self.kind is FrameType.CONTROL


def encode_control(message: ControlMessage) -> bytes:
    """
    Serialize a control message into a tagged frame.

    Args:
        message: Control message instance

    Returns:
        Frame bytes ready to send as one binary WebSocket message
    """
    body = message.model_dump_json(by_alias=True, exclude_none=True).encode('utf-8')
    return bytes([FrameType.CONTROL]) + body


def encode_payload(data: bytes) -> bytes:
    """Wrap raw file content into a tagged payload frame."""
    return bytes([FrameType.PAYLOAD]) + data


def decode_frame(raw: Union[bytes, bytearray, memoryview]) -> Frame:
    """
    Decode one binary WebSocket message.

    Args:
        raw: Message bytes including the tag byte

    Returns:
        Decoded Frame

    Raises:
        FrameDecodeError: If the tag is unknown or the control body is invalid
    """
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise FrameDecodeError(f"Expected binary frame, got {type(raw).__name__}")
    if len(raw) == 0:
        raise FrameDecodeError("Empty frame")

    tag = raw[0]
    if tag == FrameType.PAYLOAD:
        return Frame(kind=FrameType.PAYLOAD, payload=bytes(raw[1:]))

    if tag == FrameType.CONTROL:
        try:
            message = _control_adapter.validate_json(bytes(raw[1:]))
        except ValidationError as e:
            raise FrameDecodeError(f"Invalid control frame: {e.error_count()} validation error(s)")
        return Frame(kind=FrameType.CONTROL, message=message)

    raise FrameDecodeError(f"Unknown frame tag 0x{tag:02x}")
