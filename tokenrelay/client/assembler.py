"""Incremental message assembler - turns streamed frames into chat messages.

Two buffers are kept apart: the append-only history and a single pending
buffer for the reply being streamed. They meet only when a reply is
finalized::

    idle --begin()--> streaming --chunk--> streaming
                      streaming --end/error/stop/abort--> idle

Frames that arrive while idle are ignored, as are frames tagged with the
id of a request other than the active one (late output of a stopped or
abandoned request).
"""

import logging
from typing import Callable, Optional

from tokenrelay.client.history import ChatHistoryStore
from tokenrelay.shared.entities import AssemblerState, ChatMessage, Role
from tokenrelay.shared.errors import ValidationError
from tokenrelay.shared.frames import Frame, FrameType
from tokenrelay.shared.logger import create_logger

STOPPED_MARKER = "[stopped]"


class MessageAssembler:
    """State machine assembling one streamed assistant reply at a time.

    Args:
        history: Where user messages and finalized replies are appended.
        on_update: Called as ``on_update(pending, fragment)`` after each
            fragment is appended.
        on_complete: Called as ``on_complete(message, reason)`` when a
            reply is finalized; ``message`` is None if nothing was kept.
            ``reason`` is one of ``end``, ``error``, ``stopped``, ``aborted``.
        on_error: Called with the error text of ``error`` frames and aborts.
    """

    def __init__(
        self,
        history: ChatHistoryStore,
        on_update: Optional[Callable[[str, str], None]] = None,
        on_complete: Optional[Callable[[Optional[ChatMessage], str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.history = history
        self.on_update = on_update
        self.on_complete = on_complete
        self.on_error = on_error
        self.logger = logger or create_logger("tokenrelay.client.assembler")
        self._state = AssemblerState.IDLE
        self._pending: Optional[str] = None
        self._request_id: Optional[str] = None

    @property
    def state(self) -> AssemblerState:
        return self._state

    @property
    def is_generating(self) -> bool:
        return self._state is AssemblerState.STREAMING

    @property
    def pending(self) -> Optional[str]:
        """Text of the reply in progress, None when idle."""
        return self._pending

    @property
    def request_id(self) -> Optional[str]:
        return self._request_id

    # -- Transitions --

    def begin(self, text: str, request_id: Optional[str] = None) -> ChatMessage:
        """Echo the user's message into history and start a pending reply."""
        if self.is_generating:
            raise ValidationError("A response is still being generated")
        message = self.history.append(ChatMessage(role=Role.USER, content=text))
        self._pending = ""
        self._request_id = request_id
        self._state = AssemblerState.STREAMING
        return message

    def apply(self, frame: Frame):
        """Apply one inbound frame."""
        if frame.kind == "plain":
            self.append(frame.text)
            return

        if self._is_stale(frame.request_id):
            self.logger.debug(
                "Ignoring frame of stale request", extra={"request_id": frame.request_id}
            )
            return

        frame_type = frame.type
        if frame_type is FrameType.CHUNK:
            self.append(frame.get_text() or "")
        elif frame_type is FrameType.END:
            if frame.payload.get("cancelled"):
                self.stop()
            else:
                self.finish(frame.get_text("final"))
        elif frame_type is FrameType.ERROR:
            self.fail(frame.get_text("message") or "Unknown error")
        elif frame.get_text() is not None:
            self.append(frame.get_text())
        else:
            self.logger.warning("Dropped unsupported frame: %.80r", frame.payload)

    def append(self, fragment: str):
        """Append a fragment to the pending reply, in arrival order."""
        if not self.is_generating:
            self.logger.debug("Ignoring fragment received while idle")
            return
        if not fragment:
            return
        self._pending += fragment
        if self.on_update:
            self.on_update(self._pending, fragment)

    def finish(self, final: Optional[str] = None) -> Optional[ChatMessage]:
        """Normal end of stream, with an optional trailing remainder."""
        if not self.is_generating:
            return None
        return self._finalize(self._pending + (final or ""), "end")

    def fail(self, message: str) -> Optional[ChatMessage]:
        """Error frame: keep the partial reply, or record the error itself."""
        if not self.is_generating:
            return None
        if self.on_error:
            self.on_error(message)
        return self._finalize(self._pending or f"Error: {message}", "error")

    def stop(self) -> Optional[ChatMessage]:
        """User stop: keep the partial reply followed by the stopped marker."""
        if not self.is_generating:
            return None
        return self._finalize(self._pending + STOPPED_MARKER, "stopped")

    def abort(self, message: str) -> Optional[ChatMessage]:
        """Local failure (send failed, connection lost): keep partial reply or ``message``."""
        if not self.is_generating:
            return None
        if self.on_error:
            self.on_error(message)
        return self._finalize(self._pending or message, "aborted")

    def reset(self):
        """Drop any pending reply without recording it."""
        self._pending = None
        self._request_id = None
        self._state = AssemblerState.IDLE

    # -- Internal --

    def _is_stale(self, request_id: Optional[str]) -> bool:
        return (
            request_id is not None
            and self._request_id is not None
            and request_id != self._request_id
        )

    def _finalize(self, text: str, reason: str) -> Optional[ChatMessage]:
        message = None
        try:
            if text.strip():
                message = self.history.append(ChatMessage(role=Role.ASSISTANT, content=text))
        finally:
            self.reset()
        if self.on_complete:
            self.on_complete(message, reason)
        return message
