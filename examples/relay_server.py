"""Example: tokenrelay server in front of Groq.

Run:
    GROQ_API_KEY=gsk-... uv run python examples/relay_server.py

Try it with the terminal client:
    uv run tokenrelay-chat --url ws://127.0.0.1:8000/ws

Or with any WebSocket tool, sending either plain text or
    {"type": "user_message", "text": "Tell me a short joke"}
"""

from tokenrelay import RelayApp, RelaySettings

settings = RelaySettings.from_env(".env")
app = RelayApp(settings=settings)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.port)
