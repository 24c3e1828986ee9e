"""Terminal chat client for a tokenrelay server.

Run:
    tokenrelay-chat --url ws://127.0.0.1:8000/ws

Commands: /stop, /clear, /theme, /export <file.html>, /quit.
Ctrl+C while a reply is streaming stops it.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import Awaitable, Callable, Optional

from tokenrelay.client.assembler import MessageAssembler
from tokenrelay.client.connection import DEFAULT_RECONNECT_DELAY, RelayConnection
from tokenrelay.client.controller import ChatController
from tokenrelay.client.history import ChatHistoryStore, LocalStore, Preferences
from tokenrelay.client.render import format_timestamp, render_transcript
from tokenrelay.shared.config import DEFAULT_MAX_MESSAGE_CHARS
from tokenrelay.shared.entities import ChatMessage, ConnectionState, Role

DEFAULT_URL = "ws://127.0.0.1:8000/ws"
DEFAULT_STATE_PATH = os.path.join(os.path.expanduser("~"), ".tokenrelay", "chat.json")

_THEMES = {
    True: {"user": "\033[96m", "assistant": "\033[95m", "dim": "\033[2m", "error": "\033[91m"},
    False: {"user": "\033[34m", "assistant": "\033[35m", "dim": "\033[90m", "error": "\033[31m"},
}
_RESET = "\033[0m"


class TerminalView:
    """Writes the conversation to a terminal stream."""

    def __init__(self, preferences: Preferences, out=None):
        self.preferences = preferences
        self.out = out or sys.stdout
        self.is_tty = hasattr(self.out, "isatty") and self.out.isatty()
        self._idle = asyncio.Event()
        self._idle.set()

    def _color(self, kind: str, text: str) -> str:
        if not self.is_tty:
            return text
        return _THEMES[self.preferences.dark_mode][kind] + text + _RESET

    def _write(self, text: str):
        self.out.write(text)
        self.out.flush()

    def show_message(self, message: ChatMessage):
        label = "You" if message.role is Role.USER else "AI"
        stamp = self._color("dim", "[%s]" % format_timestamp(message.timestamp))
        self._write("%s %s %s\n" % (stamp, self._color(message.role.value, label + ":"), message.content))

    def show_history(self, history: ChatHistoryStore):
        for message in history:
            self.show_message(message)
        self._write("\n")

    def notice(self, text: str):
        self._write(self._color("dim", "* %s\n" % text))

    # -- Assembler / connection callbacks --

    def start_reply(self):
        self._idle.clear()
        self._write(self._color("assistant", "AI: "))

    def on_update(self, pending: str, fragment: str):
        self._write(fragment)

    def on_complete(self, message: Optional[ChatMessage], reason: str):
        if reason == "stopped":
            self._write(self._color("dim", " [stopped]"))
        self._write("\n\n")
        self._idle.set()

    def on_error(self, text: str):
        self._write(self._color("error", "\n! %s" % text))

    def on_state_change(self, state: ConnectionState):
        if state is ConnectionState.OPEN:
            self.notice("Connected")
        elif state is ConnectionState.CLOSED:
            self.notice("Disconnected (reconnecting...)")

    def prompt(self):
        self._write(self._color("user", "You: "))

    async def wait_idle(self):
        await self._idle.wait()


def handle_line(chat: ChatController, view: TerminalView, line: str) -> bool:
    """Run one line of user input. Returns False when the user quits."""
    command = line.strip()
    if command in ("/quit", "/exit"):
        chat.stop()
        return False
    if command == "/stop":
        if chat.is_generating:
            chat.stop()
        else:
            view.notice("Nothing to stop")
        return True
    if command == "/clear":
        chat.clear()
        view.notice("History cleared")
        return True
    if command == "/theme":
        dark = view.preferences.toggle_dark_mode()
        view.notice("Theme: %s" % ("dark" if dark else "light"))
        return True
    if command.startswith("/export"):
        target = command[len("/export"):].strip() or "transcript.html"
        try:
            with open(target, "w", encoding="utf-8") as fh:
                fh.write(render_transcript(chat.history))
        except OSError as exc:
            view.notice("Could not write %s: %s" % (target, exc))
        else:
            view.notice("Transcript written to %s" % target)
        return True

    if chat.submit(line) and chat.is_generating:
        view.start_reply()
    return True


async def _read_line() -> str:
    return await asyncio.to_thread(input)


async def interact(chat: ChatController, view: TerminalView, read_line: Callable[[], Awaitable[str]] = _read_line):
    """Read user input until /quit or EOF, also while a reply streams.

    Input is read by a single pending reader that outlives each reply, so a
    ``/stop`` typed during streaming is handled as soon as it arrives.
    """
    loop = asyncio.get_running_loop()
    reader: Optional[asyncio.Future] = None
    interrupt_armed = False
    try:
        while True:
            if chat.is_generating and not interrupt_armed:
                interrupt_armed = _arm_interrupt(loop, chat.stop)
            elif not chat.is_generating and interrupt_armed:
                _disarm_interrupt(loop)
                interrupt_armed = False

            if reader is None:
                if not chat.is_generating:
                    view.prompt()
                reader = asyncio.ensure_future(read_line())

            if chat.is_generating:
                idle = asyncio.ensure_future(view.wait_idle())
                await asyncio.wait({reader, idle}, return_when=asyncio.FIRST_COMPLETED)
                if not reader.done():
                    view.prompt()
                    continue
                idle.cancel()

            try:
                line = await reader
            except (EOFError, KeyboardInterrupt):
                break
            finally:
                reader = None
            if not handle_line(chat, view, line):
                break
    finally:
        if interrupt_armed:
            _disarm_interrupt(loop)
        if reader is not None:
            reader.cancel()


def _arm_interrupt(loop: asyncio.AbstractEventLoop, callback) -> bool:
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError, ValueError):
        return False
    return True


def _disarm_interrupt(loop: asyncio.AbstractEventLoop):
    try:
        loop.remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError, ValueError):
        pass


async def chat_loop(url: str, state_path: Optional[str], reconnect_delay: float, max_chars: int):
    store = LocalStore(state_path)
    history = ChatHistoryStore(store)
    view = TerminalView(Preferences(store))
    assembler = MessageAssembler(
        history,
        on_update=view.on_update,
        on_complete=view.on_complete,
        on_error=view.on_error,
    )
    connection = RelayConnection(url, on_frame=None, reconnect_delay=reconnect_delay)
    chat = ChatController(
        connection,
        history,
        assembler,
        max_message_chars=max_chars,
        on_state_change=view.on_state_change,
        on_notice=view.notice,
    )

    async with connection:
        view.show_history(history)
        if not await connection.wait_open(timeout=5):
            view.notice("Server not reachable yet, still trying %s" % url)
        await interact(chat, view)

    sys.stdout.write("\nBye!\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Chat with a tokenrelay server")
    parser.add_argument("--url", default=os.environ.get("TOKENRELAY_URL", DEFAULT_URL), help="Relay WebSocket URL")
    parser.add_argument("--state", default=DEFAULT_STATE_PATH, help="File holding chat history and preferences")
    parser.add_argument("--no-persist", action="store_true", help="Keep history in memory only")
    parser.add_argument("--reconnect-delay", type=float, default=DEFAULT_RECONNECT_DELAY, help="Seconds between reconnect attempts")
    parser.add_argument("--max-chars", type=int, default=DEFAULT_MAX_MESSAGE_CHARS, help="Longest message accepted")
    args = parser.parse_args(argv)

    state_path = None if args.no_persist else args.state
    asyncio.run(chat_loop(args.url, state_path, args.reconnect_delay, args.max_chars))


if __name__ == "__main__":
    main()
