"""tokenrelay - stream LLM completions to chat clients over WebSocket.

Two sides:
    - RelayApp / RelaySession: WebSocket relay server (pip install tokenrelay)
    - RelayConnection / MessageAssembler / ChatController: chat client
      (pip install tokenrelay[client])
"""

from tokenrelay.shared.config import RelaySettings
from tokenrelay.shared.entities import ChatMessage, ConnectionState, HealthStatus, LLMUsage, Role
from tokenrelay.server.app import RelayApp
from tokenrelay.server.session import RelaySession
from tokenrelay.upstream.chat_completions import ChatCompletionsSource

__all__ = [
    "RelayApp",
    "RelaySession",
    "RelaySettings",
    "ChatCompletionsSource",
    "ChatMessage",
    "ConnectionState",
    "HealthStatus",
    "LLMUsage",
    "Role",
]

try:
    from tokenrelay.client import ChatController, MessageAssembler, RelayConnection

    __all__.extend(["ChatController", "MessageAssembler", "RelayConnection"])
except ImportError:
    pass
