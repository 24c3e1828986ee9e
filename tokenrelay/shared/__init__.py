"""Shared utilities and foundational types for tokenrelay."""

from tokenrelay.shared.entities import (
    AssemblerState,
    ChatMessage,
    ConnectionContext,
    ConnectionState,
    HealthStatus,
    LLMUsage,
    Role,
)
from tokenrelay.shared.errors import (
    ProtocolError,
    RelayError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from tokenrelay.shared.logger import create_logger
from tokenrelay.shared.banner import detect_host, print_banner, resolve_import_string
from tokenrelay.shared.config import RelaySettings

__all__ = [
    "AssemblerState",
    "ChatMessage",
    "ConnectionContext",
    "ConnectionState",
    "HealthStatus",
    "LLMUsage",
    "Role",
    "RelayError",
    "ValidationError",
    "UpstreamError",
    "TransportError",
    "ProtocolError",
    "create_logger",
    "detect_host",
    "print_banner",
    "resolve_import_string",
    "RelaySettings",
]
