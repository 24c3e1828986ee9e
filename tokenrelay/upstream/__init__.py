"""Upstream token sources for tokenrelay."""

from tokenrelay.upstream.chat_completions import ChatCompletionsSource

__all__ = [
    "ChatCompletionsSource",
]
