"""RelayApp - WebSocket relay server in front of a streaming completion API."""

import contextlib
import logging
import os
import time
from collections.abc import Sequence
from typing import Any, Callable, Dict, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles
from starlette.websockets import WebSocket, WebSocketDisconnect

from tokenrelay.server.session import RelaySession
from tokenrelay.shared.banner import detect_host, print_banner, resolve_import_string
from tokenrelay.shared.config import RelaySettings
from tokenrelay.shared.entities import ConnectionContext, HealthStatus
from tokenrelay.shared.logger import create_logger
from tokenrelay.shared.protocols import TokenSource
from tokenrelay.upstream.chat_completions import ChatCompletionsSource


class RelayApp(Starlette):
    """Relay server: ``GET /``, ``GET /ping`` and the ``/ws`` relay.

    The token source is opened in the app lifespan when it is an async
    context manager (``ChatCompletionsSource`` is). Without an explicit
    source one is built from the settings.

    Example:
        app = RelayApp(settings=RelaySettings.from_env(".env"))
        app.run()
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        source: Optional[TokenSource] = None,
        middleware: Sequence[Middleware] | None = None,
        session_factory: Optional[Callable[..., RelaySession]] = None,
    ):
        self.settings = settings or RelaySettings.from_env()
        self.source = source or ChatCompletionsSource.from_settings(self.settings)
        self._session_factory = session_factory or RelaySession
        self._active_requests: Dict[str, float] = {}
        self._forced_health_status: Optional[HealthStatus] = None
        self.sessions: Dict[str, RelaySession] = {}

        routes = [
            Route("/", self._handle_index, methods=["GET"]),
            Route("/ping", self._handle_ping, methods=["GET"]),
            WebSocketRoute("/ws", self._handle_websocket),
        ]
        static_dir = self.settings.static_dir
        if static_dir and os.path.isdir(static_dir):
            routes.append(Mount("/static", app=StaticFiles(directory=static_dir, html=True), name="static"))

        super().__init__(
            routes=routes,
            lifespan=self._lifespan,
            middleware=list(middleware or []) or None,
        )
        self.debug = self.settings.debug
        self.logger = create_logger("tokenrelay.server", self.settings.debug)

    # -- Lifespan --

    @contextlib.asynccontextmanager
    async def _lifespan(self, app):
        if hasattr(self.source, "__aenter__"):
            async with self.source:
                self.logger.info(
                    "Token source ready: %s/%s"
                    % (getattr(self.source, "provider", "?"), getattr(self.source, "model", "?"))
                )
                yield
        else:
            yield

    # -- Health status --

    def get_health_status(self) -> HealthStatus:
        """Forced status if set, otherwise BUSY while any request streams."""
        if self._forced_health_status is not None:
            return self._forced_health_status
        return HealthStatus.BUSY if self._active_requests else HealthStatus.HEALTHY

    def force_health_status(self, status: HealthStatus):
        """Force health status to a fixed value."""
        self._forced_health_status = status

    def clear_forced_health_status(self):
        """Clear forced status, resume automatic detection."""
        self._forced_health_status = None

    # -- Request tracking (called by sessions) --

    def add_request(self, request_id: str):
        self._active_requests[request_id] = time.time()

    def complete_request(self, request_id: str) -> bool:
        return self._active_requests.pop(request_id, None) is not None

    # -- Server --

    def run(self, port: Optional[int] = None, host: Optional[str] = None, reload: bool = False, **kwargs):
        """Start the server with uvicorn.

        Args:
            port: Port to listen on (default: settings.port).
            host: Host to bind. Auto-detected if None.
            reload: Enable auto-reload on code changes (default: False).
        """
        import uvicorn

        if host is None:
            host = detect_host()
        if port is None:
            port = self.settings.port

        print_banner("WebSocket Relay", host, port)

        workers = kwargs.pop("workers", 1)
        app_target: Any = self
        if reload or workers > 1:
            import_string = resolve_import_string(self)
            if import_string is None:
                raise RuntimeError(
                    "Cannot resolve import string for the app. "
                    "When using workers > 1 or reload=True, the app variable "
                    "must be defined at module level. "
                    "Example: uvicorn examples.relay_server:app --workers 2"
                )
            app_target = import_string

        uvicorn_config = {
            "host": host,
            "port": port,
            "ws": "wsproto",
            "access_log": self.debug,
            "log_level": "info" if self.debug else "warning",
        }
        if reload:
            uvicorn_config["reload"] = True
        if workers > 1:
            uvicorn_config["workers"] = workers
        uvicorn_config.update(kwargs)
        uvicorn.run(app_target, **uvicorn_config)

    # -- Handlers --

    def _handle_index(self, request):
        return PlainTextResponse("tokenrelay WebSocket server is running (connect to /ws)")

    def _handle_ping(self, request):
        return JSONResponse(
            {
                "status": self.get_health_status().value,
                "connections": len(self.sessions),
                "active_requests": len(self._active_requests),
            }
        )

    async def _handle_websocket(self, websocket: WebSocket):
        client = websocket.client
        context = ConnectionContext(
            client=f"{client.host}:{client.port}" if client else None,
        )
        session = self._session_factory(
            websocket,
            self.source,
            settings=self.settings,
            context=context,
            logger=self.logger,
            tracker=self,
        )
        self.sessions[context.connection_id] = session
        try:
            await websocket.accept()
            await session.run()
        except WebSocketDisconnect:
            pass
        except Exception:
            self.logger.log(
                logging.ERROR,
                "WebSocket handler failed",
                extra={"connection_id": context.connection_id},
                exc_info=True,
            )
            try:
                await websocket.close(code=1011)
            except RuntimeError:
                pass
        finally:
            self.sessions.pop(context.connection_id, None)
