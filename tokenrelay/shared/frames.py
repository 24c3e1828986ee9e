"""Wire frames exchanged over the relay WebSocket.

Every inbound text frame is parsed into a tagged variant:

    Structured(payload)  the frame is valid JSON (any JSON value)
    Plain(text)          anything else, the legacy plain-text mode

Consumers dispatch on ``frame.kind``; a frame that parses as JSON is
always structured, whatever its content.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from tokenrelay.shared.errors import ProtocolError


class FrameType(str, Enum):
    """Discriminant of a structured control frame."""

    CHUNK = "chunk"
    END = "end"
    ERROR = "error"
    CANCEL = "cancel"
    USER_MESSAGE = "user_message"


@dataclass(frozen=True)
class Plain:
    """A raw text fragment (legacy mode)."""

    text: str
    kind: str = "plain"


@dataclass(frozen=True)
class Structured:
    """A frame that parsed as JSON."""

    payload: Any
    kind: str = "structured"

    @property
    def type(self) -> Optional[FrameType]:
        """The frame type, or None when the payload carries no known type."""
        if not isinstance(self.payload, dict):
            return None
        try:
            return FrameType(self.payload.get("type"))
        except ValueError:
            return None

    @property
    def request_id(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            value = self.payload.get("id")
            return str(value) if value is not None else None
        return None

    def get_text(self, key: str = "text") -> Optional[str]:
        """Return ``payload[key]`` if it is a string."""
        if isinstance(self.payload, dict):
            value = self.payload.get(key)
            if isinstance(value, str):
                return value
        return None


Frame = Union[Structured, Plain]


def parse_frame(raw: Union[str, bytes]) -> Frame:
    """Parse one inbound text frame."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("Binary frame is not valid UTF-8") from exc
    try:
        payload = json.loads(raw)
    except ValueError:
        return Plain(raw)
    return Structured(payload)


def encode_frame(frame_type: FrameType, request_id: Optional[str] = None, **fields) -> str:
    """Serialize a structured frame, omitting fields that are None."""
    body = {"type": FrameType(frame_type).value}
    if request_id is not None:
        body["id"] = request_id
    body.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(body, ensure_ascii=False)


def chunk_frame(text: str, request_id: Optional[str] = None) -> str:
    return encode_frame(FrameType.CHUNK, request_id, text=text)


def end_frame(
    final: Optional[str] = None,
    request_id: Optional[str] = None,
    cancelled: bool = False,
) -> str:
    return encode_frame(
        FrameType.END, request_id, final=final or None, cancelled=True if cancelled else None
    )


def error_frame(message: str, request_id: Optional[str] = None) -> str:
    return encode_frame(FrameType.ERROR, request_id, message=message)


def user_message_frame(text: str, request_id: Optional[str] = None) -> str:
    return encode_frame(FrameType.USER_MESSAGE, request_id, text=text)


def cancel_frame(request_id: Optional[str] = None) -> str:
    return encode_frame(FrameType.CANCEL, request_id)
