"""RelaySession - one WebSocket connection relaying prompts to a token source."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from starlette.websockets import WebSocket, WebSocketDisconnect

from tokenrelay.shared.config import RelaySettings
from tokenrelay.shared.entities import ConnectionContext, LLMUsage
from tokenrelay.shared.errors import ProtocolError, TransportError, UpstreamError, ValidationError
from tokenrelay.shared.frames import (
    FrameType,
    chunk_frame,
    end_frame,
    error_frame,
    parse_frame,
)
from tokenrelay.shared.logger import create_logger
from tokenrelay.shared.protocols import TokenSource
from tokenrelay.shared.validation import validate_message_text

GENERIC_ERROR = "Something went wrong. Please try again."
BUSY_ERROR = "A response is already being generated"


@dataclass
class _Request:
    """A request in flight on a session."""

    wire_id: Optional[str]
    log_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started: float = field(default_factory=time.monotonic)
    terminated: bool = False
    task: Optional[asyncio.Task] = None


class RelaySession:
    """Relays user messages from one client to the token source.

    One request may be in flight at a time. A second ``user_message``
    during a stream is rejected with an ``error`` frame and the running
    stream is left alone. Each accepted request ends with exactly one
    terminal frame: ``end`` on completion, ``end`` with ``cancelled`` on
    cancel, ``error`` on any failure. No terminal is sent once the client
    has gone away.

    The receive loop and the upstream stream run as separate tasks on the
    same event loop, so a ``cancel`` frame is read while tokens are still
    being forwarded.
    """

    def __init__(
        self,
        websocket: WebSocket,
        source: TokenSource,
        settings: Optional[RelaySettings] = None,
        context: Optional[ConnectionContext] = None,
        logger: Optional[logging.Logger] = None,
        tracker=None,
    ):
        self._websocket = websocket
        self._source = source
        self._settings = settings or RelaySettings()
        self.context = context or ConnectionContext()
        self.logger = logger or create_logger("tokenrelay.session")
        self._tracker = tracker
        self._request: Optional[_Request] = None
        self._closed = False

    @property
    def busy(self) -> bool:
        """True while a request is in flight."""
        return self._request is not None

    # -- Receive loop --

    async def run(self):
        """Serve the connection until the client disconnects."""
        self._log(logging.INFO, "Client connected")
        try:
            while True:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self.handle_frame(raw)
        except WebSocketDisconnect:
            pass
        finally:
            self._closed = True
            await self._abort()
            self._log(logging.INFO, "Client disconnected")

    async def handle_frame(self, raw):
        """Dispatch one inbound frame."""
        try:
            frame = parse_frame(raw)
            if frame.kind == "plain":
                await self.submit(frame.text)
                return

            frame_type = frame.type
            if frame_type is FrameType.USER_MESSAGE:
                text = frame.get_text()
                if text is None:
                    raise ProtocolError("user_message frame requires a string 'text' field")
                await self.submit(text, frame.request_id)
            elif frame_type is FrameType.CANCEL:
                await self.cancel()
            else:
                raise ProtocolError("Unsupported frame: %.80s" % (raw,))
        except ProtocolError as exc:
            self._log(logging.WARNING, "Dropped frame: %s" % exc)
            if not self.busy:
                await self._send(error_frame(str(exc)))

    # -- Operations --

    async def submit(self, text: str, wire_id: Optional[str] = None):
        """Validate ``text`` and start streaming a completion for it."""
        if self._request is not None:
            self._log(logging.WARNING, "Rejected message: request already in flight", self._request)
            await self._send(error_frame(BUSY_ERROR, wire_id))
            return

        try:
            validate_message_text(text, self._settings.max_message_chars)
        except ValidationError as exc:
            self._log(logging.INFO, "Rejected message: %s" % exc)
            await self._send(error_frame(str(exc), wire_id))
            return

        request = _Request(wire_id=wire_id)
        self._request = request
        if self._tracker is not None:
            self._tracker.add_request(request.log_id)
        request.task = asyncio.create_task(self._relay(request, text))
        request.task.add_done_callback(lambda _: self._finish(request))
        self._log(logging.INFO, "Streaming started (%d chars)" % len(text), request)

    async def cancel(self):
        """Abort the in-flight request and close it with a cancelled ``end``."""
        request = self._request
        if request is None or request.task is None or request.task.done():
            self._log(logging.DEBUG, "Cancel ignored: no request in flight")
            return
        if request.terminated:
            await asyncio.wait([request.task])
            return
        request.task.cancel()
        await asyncio.wait([request.task])
        self._log(logging.INFO, "Streaming cancelled", request)
        await self._terminate(request, end_frame(request_id=request.wire_id, cancelled=True))

    # -- Internal --

    async def _relay(self, request: _Request, text: str):
        usage = LLMUsage(
            model=getattr(self._source, "model", None),
            provider=getattr(self._source, "provider", None),
            output_fragments=0,
            output_chars=0,
        )
        stream = None
        try:
            stream = self._source.stream(text)
            iterator = stream.__aiter__()
            while True:
                try:
                    fragment = await asyncio.wait_for(
                        iterator.__anext__(), self._settings.stream_idle_timeout
                    )
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    raise UpstreamError(
                        "The model stopped responding (no output for %gs)"
                        % self._settings.stream_idle_timeout
                    ) from None
                if not fragment:
                    continue
                if usage.output_fragments == 0:
                    usage.first_fragment_ms = round((time.monotonic() - request.started) * 1000, 1)
                usage.output_fragments += 1
                usage.output_chars += len(fragment)
                await self._send(chunk_frame(fragment, request.wire_id), strict=True)
        except TransportError:
            self._log(logging.INFO, "Client went away mid-stream", request)
            return
        except UpstreamError as exc:
            self._log(logging.WARNING, "Upstream failed: %s" % exc, request)
            await self._terminate(request, error_frame(str(exc), request.wire_id))
            return
        except Exception:
            self._log(logging.ERROR, "Streaming failed", request, exc_info=True)
            await self._terminate(request, error_frame(GENERIC_ERROR, request.wire_id))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        usage.latency_ms = round((time.monotonic() - request.started) * 1000, 1)
        self._log(logging.INFO, "Streaming completed", request, llm_usage=usage)
        await self._terminate(request, end_frame(request_id=request.wire_id))

    async def _terminate(self, request: _Request, frame: str):
        if request.terminated:
            return
        request.terminated = True
        await self._send(frame)

    def _finish(self, request: _Request):
        if self._request is request:
            self._request = None
        if self._tracker is not None:
            self._tracker.complete_request(request.log_id)

    async def _abort(self):
        request = self._request
        if request is not None and request.task is not None and not request.task.done():
            request.task.cancel()
            await asyncio.wait([request.task])
            self._log(logging.INFO, "Streaming aborted: connection closed", request)

    async def _send(self, data: str, strict: bool = False):
        """Send a text frame; a closed socket raises TransportError only if ``strict``."""
        if self._closed:
            if strict:
                raise TransportError("connection closed")
            return
        try:
            await self._websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            self._log(logging.DEBUG, "Send failed: %s" % exc)
            if strict:
                raise TransportError(str(exc)) from exc

    def _log(self, level: int, message: str, request: Optional[_Request] = None, llm_usage=None, **kwargs):
        extra = {"connection_id": self.context.connection_id}
        if self.context.client:
            extra["client"] = self.context.client
        if request is not None:
            extra["request_id"] = request.wire_id or request.log_id
        if llm_usage is not None:
            extra["llm_usage"] = llm_usage
        self.logger.log(level, message, extra=extra, **kwargs)
