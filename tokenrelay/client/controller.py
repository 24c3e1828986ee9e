"""ChatController - what the chat UI calls: submit, stop, clear."""

import logging
import uuid
from typing import Callable, Optional

from tokenrelay.client.assembler import MessageAssembler
from tokenrelay.client.connection import RelayConnection
from tokenrelay.client.history import ChatHistoryStore
from tokenrelay.shared.config import DEFAULT_MAX_MESSAGE_CHARS
from tokenrelay.shared.entities import ConnectionState
from tokenrelay.shared.errors import ProtocolError, ValidationError
from tokenrelay.shared.frames import cancel_frame, parse_frame, user_message_frame
from tokenrelay.shared.logger import create_logger
from tokenrelay.shared.validation import validate_message_text

SEND_FAILED = "Unable to send: disconnected."
CONNECTION_LOST = "Connection lost."


class ChatController:
    """Ties a connection, an assembler and a history together.

    The connection is built by the caller and handed in; the controller
    takes over its ``on_frame`` and ``on_state_change`` callbacks and
    forwards state changes to ``on_state_change`` of its own.

    Example:
        history = ChatHistoryStore(LocalStore("chat.json"))
        connection = RelayConnection("ws://127.0.0.1:8000/ws", on_frame=None)
        chat = ChatController(connection, history)
        async with connection:
            chat.submit("hello")
    """

    def __init__(
        self,
        connection: RelayConnection,
        history: Optional[ChatHistoryStore] = None,
        assembler: Optional[MessageAssembler] = None,
        max_message_chars: int = DEFAULT_MAX_MESSAGE_CHARS,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.history = history if history is not None else ChatHistoryStore()
        self.assembler = assembler or MessageAssembler(self.history)
        self.connection = connection
        self.connection.on_frame = self.handle_frame
        self.connection.on_state_change = self.handle_state_change
        self.max_message_chars = max_message_chars
        self.on_state_change = on_state_change
        self.on_notice = on_notice
        self.logger = logger or create_logger("tokenrelay.client")

    @property
    def is_generating(self) -> bool:
        return self.assembler.is_generating

    def can_send(self, text: str) -> bool:
        """Whether ``submit(text)`` would be accepted locally right now."""
        if self.is_generating:
            return False
        try:
            validate_message_text(text, self.max_message_chars)
        except ValidationError:
            return False
        return True

    def submit(self, text: str) -> bool:
        """Send a user message; False if it was rejected or could not be sent.

        Rejected input (empty, too long, reply still streaming) leaves the
        history untouched and sends nothing. A send that fails after the
        optimistic echo records an error reply instead.
        """
        try:
            validate_message_text(text, self.max_message_chars)
            if self.is_generating:
                raise ValidationError("Wait for the current response or stop it first")
        except ValidationError as exc:
            self.logger.info("Message rejected: %s", exc)
            self._notice(str(exc))
            return False

        request_id = uuid.uuid4().hex
        self.assembler.begin(text, request_id)
        if not self.connection.send(user_message_frame(text, request_id)):
            self.assembler.abort(SEND_FAILED)
            return False
        return True

    def stop(self):
        """Ask the relay to cancel and finalize the partial reply as stopped."""
        if not self.is_generating:
            return
        self.connection.send(cancel_frame(self.assembler.request_id))
        self.assembler.stop()

    def clear(self):
        """Wipe the history and any reply in progress."""
        self.assembler.reset()
        self.history.clear()

    # -- Connection callbacks --

    def handle_frame(self, raw: str):
        try:
            frame = parse_frame(raw)
        except ProtocolError as exc:
            self.logger.warning("Dropped frame: %s", exc)
            return
        self.assembler.apply(frame)

    def handle_state_change(self, state: ConnectionState):
        if state is ConnectionState.CLOSED and self.is_generating:
            self.assembler.abort(CONNECTION_LOST)
        if self.on_state_change:
            self.on_state_change(state)

    def _notice(self, message: str):
        if self.on_notice:
            self.on_notice(message)
