"""Protocol definitions for tokenrelay collaborators."""

from typing import AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class TokenSource(Protocol):
    """Upstream completion API producing a lazy sequence of text fragments.

    ``stream`` returns an async iterator; closing it (``aclose``) abandons
    the request. Completion is the iterator ending, failure is an
    ``UpstreamError`` raised from it.
    """

    provider: str
    model: str

    def stream(self, prompt: str) -> AsyncIterator[str]: ...
