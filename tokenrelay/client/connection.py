"""RelayConnection - the client's persistent WebSocket to the relay."""

import asyncio
import logging
from typing import Callable, Optional

import websockets

from tokenrelay.shared.entities import ConnectionState
from tokenrelay.shared.logger import create_logger

DEFAULT_RECONNECT_DELAY = 2.0


class RelayConnection:
    """Owns one logical connection to the relay and keeps it up.

    A dropped or failed connection is retried after a fixed delay, without
    limit, until ``close()``. Inbound frames go to ``on_frame`` in arrival
    order. ``on_state_change`` sees every transition; ``closed`` is always
    reported before a reconnect is attempted, and frames of a dropped
    connection are never delivered afterwards.

    Example:
        async with RelayConnection("ws://127.0.0.1:8000/ws", on_frame=print) as conn:
            await conn.wait_open()
            conn.send('{"type": "user_message", "text": "hello"}')
    """

    def __init__(
        self,
        url: str,
        on_frame: Callable[[str], None],
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        *,
        connector: Optional[Callable] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.on_frame = on_frame
        self.on_state_change = on_state_change
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect
        self.logger = logger or create_logger("tokenrelay.client.connection")
        self._state = ConnectionState.CLOSED
        self._outbox: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._opened = asyncio.Event()
        self._closed = False
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def start(self):
        """Begin connecting in the background."""
        if self._closed:
            raise RuntimeError("RelayConnection is closed")
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def wait_open(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection is open; False on timeout."""
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def send(self, data: str) -> bool:
        """Queue a text frame. Returns False unless the connection is open."""
        if self._state is not ConnectionState.OPEN or self._outbox is None:
            self.logger.debug("Send refused: connection %s", self._state.value)
            return False
        self._outbox.put_nowait(data)
        return True

    async def close(self):
        """Release the transport and cancel any pending reconnect."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        self._set_state(ConnectionState.CLOSED)

    # -- Internal --

    async def _run(self):
        while not self._closed:
            self.attempts += 1
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with self._connector(self.url) as ws:
                    await self._serve(ws)
                self.logger.info("Connection closed by server")
            except (OSError, websockets.exceptions.WebSocketException) as exc:
                self.logger.warning("Connection to %s failed: %s", self.url, exc)
            except Exception:
                self.logger.exception("Connection to %s failed unexpectedly", self.url)
            finally:
                self._outbox = None
                self._set_state(ConnectionState.CLOSED)

            if self._closed:
                break
            self.logger.info("Reconnecting in %gs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def _serve(self, ws):
        outbox: asyncio.Queue = asyncio.Queue()
        writer = asyncio.create_task(self._write(ws, outbox))
        self._outbox = outbox
        self._set_state(ConnectionState.OPEN)
        try:
            async for raw in ws:
                self._deliver(raw)
        finally:
            self._outbox = None
            writer.cancel()
            await asyncio.wait([writer])

    async def _write(self, ws, outbox: asyncio.Queue):
        while True:
            data = await outbox.get()
            try:
                await ws.send(data)
            except websockets.exceptions.ConnectionClosed as exc:
                self.logger.info("Frame not sent, connection closed: %s", exc)
                return

    def _deliver(self, raw):
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            self.on_frame(raw)
        except Exception:
            self.logger.exception("Frame handler failed")

    def _set_state(self, state: ConnectionState):
        if state is self._state:
            return
        self._state = state
        if state is ConnectionState.OPEN:
            self._opened.set()
        else:
            self._opened.clear()
        self.logger.debug("Connection %s", state.value, extra={"state": state.value})
        if self.on_state_change:
            self.on_state_change(state)
