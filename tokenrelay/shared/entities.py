"""Core domain entities for tokenrelay."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class HealthStatus(str, Enum):
    """Health status for the ping endpoint."""

    HEALTHY = "Healthy"
    BUSY = "Busy"


class Role(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ConnectionState(str, Enum):
    """Transport state of the client connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class AssemblerState(str, Enum):
    """State of the incremental message assembler."""

    IDLE = "idle"
    STREAMING = "streaming"


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ChatMessage:
    """A completed message in the chat history."""

    role: Role
    content: str
    id: str = field(default_factory=_new_id)
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("message content must be a string")
        return cls(
            role=Role(data["role"]),
            content=content,
            id=data.get("id") or _new_id(),
            timestamp=data.get("timestamp") or _utc_now(),
        )


@dataclass
class LLMUsage:
    """Upstream stream metadata for structured logging.

    Attach it to a log record via ``extra={"llm_usage": usage}`` to
    include it in the JSON log output.

    Example:
        usage = LLMUsage(
            model="llama-3.1-8b-instant",
            provider="groq",
            output_fragments=58,
            latency_ms=430.5,
        )
        logger.info("Stream finished", extra={"llm_usage": usage})
    """

    model: Optional[str] = None
    provider: Optional[str] = None
    output_fragments: Optional[int] = None
    output_chars: Optional[int] = None
    first_fragment_ms: Optional[float] = None
    latency_ms: Optional[float] = None
    extra: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return non-None fields as a dict."""
        raw = asdict(self)
        return {k: v for k, v in raw.items() if v is not None}


@dataclass
class ConnectionContext:
    """Per-connection context shared by a relay session and its log records."""

    connection_id: str = field(default_factory=_new_id)
    client: Optional[str] = None
