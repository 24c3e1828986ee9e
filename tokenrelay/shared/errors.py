"""Error taxonomy for tokenrelay."""


class RelayError(Exception):
    """Base class for all tokenrelay errors."""


class ValidationError(RelayError):
    """User input rejected before any upstream call (empty or oversized)."""


class UpstreamError(RelayError):
    """Failure reported by the token source.

    The message is safe to show to the user; the relay sends it as the
    terminal ``error`` frame of the request.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(RelayError):
    """The persistent connection dropped or could not be established."""


class ProtocolError(RelayError):
    """A frame could not be understood."""
