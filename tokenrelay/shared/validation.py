"""User input validation shared by the relay and the client."""

from tokenrelay.shared.config import DEFAULT_MAX_MESSAGE_CHARS
from tokenrelay.shared.errors import ValidationError


def validate_message_text(text, max_chars: int = DEFAULT_MAX_MESSAGE_CHARS) -> str:
    """Return ``text`` unchanged if it may be sent upstream.

    Raises:
        ValidationError: empty after trimming, or longer than ``max_chars``.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message is empty")
    if len(text) > max_chars:
        raise ValidationError(
            "Message is too long (%d characters, limit is %d)" % (len(text), max_chars)
        )
    return text
