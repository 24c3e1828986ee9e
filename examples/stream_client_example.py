"""Example: one question over the relay, printing tokens as they arrive.

First start the server:
    GROQ_API_KEY=gsk-... uv run python examples/relay_server.py

Then run this client:
    uv run python examples/stream_client_example.py "What is a WebSocket?"
"""

import asyncio
import sys

from tokenrelay.client import ChatController, ChatHistoryStore, MessageAssembler, RelayConnection

SERVER_URL = "ws://127.0.0.1:8000/ws"


async def ask(question: str):
    done = asyncio.Event()
    history = ChatHistoryStore(greeting=None)
    assembler = MessageAssembler(
        history,
        on_update=lambda pending, fragment: sys.stdout.write(fragment) or sys.stdout.flush(),
        on_complete=lambda message, reason: done.set(),
        on_error=lambda text: sys.stdout.write(f"\n[error] {text}"),
    )
    connection = RelayConnection(SERVER_URL, on_frame=None)
    chat = ChatController(connection, history, assembler)

    async with connection:
        if not await connection.wait_open(timeout=5):
            sys.stdout.write(f"Could not connect to {SERVER_URL}\n")
            return
        sys.stdout.write("AI: ")
        if chat.submit(question):
            await done.wait()
        sys.stdout.write("\n")


if __name__ == "__main__":
    asyncio.run(ask(" ".join(sys.argv[1:]) or "Tell me a short joke"))
