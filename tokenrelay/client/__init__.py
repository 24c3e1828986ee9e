"""Client bounded context for tokenrelay (pip install tokenrelay[client])."""

from tokenrelay.client.assembler import STOPPED_MARKER, MessageAssembler
from tokenrelay.client.connection import RelayConnection
from tokenrelay.client.controller import ChatController
from tokenrelay.client.history import ChatHistoryStore, LocalStore, Preferences
from tokenrelay.client.render import format_timestamp, render_markdown_to_html

__all__ = [
    "STOPPED_MARKER",
    "MessageAssembler",
    "RelayConnection",
    "ChatController",
    "ChatHistoryStore",
    "LocalStore",
    "Preferences",
    "format_timestamp",
    "render_markdown_to_html",
]
