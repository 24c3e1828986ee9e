"""Environment configuration for tokenrelay.

Values are read with Starlette's ``Config`` from the process environment
and, when given, a ``.env`` file:

    GROQ_API_KEY                      upstream API key (required for Groq)
    TOKENRELAY_UPSTREAM_URL           OpenAI-compatible base URL
    TOKENRELAY_MODEL                  model name sent upstream
    TOKENRELAY_MAX_MESSAGE_CHARS      longest accepted user message
    TOKENRELAY_STREAM_IDLE_TIMEOUT    seconds to wait for the next fragment
    TOKENRELAY_UPSTREAM_TIMEOUT       HTTP timeout for the upstream client
    TOKENRELAY_STATIC_DIR             optional directory served at /static
    TOKENRELAY_DEBUG                  verbose logging and access log
    PORT                              listen port
"""

import os
from dataclasses import dataclass
from typing import Optional

from starlette.config import Config
from starlette.datastructures import Secret

DEFAULT_UPSTREAM_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_MAX_MESSAGE_CHARS = 2000
DEFAULT_PORT = 8000


@dataclass
class RelaySettings:
    """Settings shared by the relay server and its sessions."""

    api_key: Secret = Secret("")
    upstream_url: str = DEFAULT_UPSTREAM_URL
    model: str = DEFAULT_MODEL
    max_message_chars: int = DEFAULT_MAX_MESSAGE_CHARS
    stream_idle_timeout: Optional[float] = 30.0
    upstream_timeout: float = 60.0
    static_dir: Optional[str] = None
    port: int = DEFAULT_PORT
    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "RelaySettings":
        """Load settings from the environment and an optional env file."""
        if env_file is not None and not os.path.exists(env_file):
            env_file = None
        config = Config(env_file)
        idle_timeout = config("TOKENRELAY_STREAM_IDLE_TIMEOUT", cast=float, default=30.0)
        return cls(
            api_key=config("GROQ_API_KEY", cast=Secret, default=""),
            upstream_url=config("TOKENRELAY_UPSTREAM_URL", default=DEFAULT_UPSTREAM_URL),
            model=config("TOKENRELAY_MODEL", default=DEFAULT_MODEL),
            max_message_chars=config(
                "TOKENRELAY_MAX_MESSAGE_CHARS", cast=int, default=DEFAULT_MAX_MESSAGE_CHARS
            ),
            stream_idle_timeout=idle_timeout if idle_timeout > 0 else None,
            upstream_timeout=config("TOKENRELAY_UPSTREAM_TIMEOUT", cast=float, default=60.0),
            static_dir=config("TOKENRELAY_STATIC_DIR", default=None),
            port=config("PORT", cast=int, default=DEFAULT_PORT),
            debug=config("TOKENRELAY_DEBUG", cast=bool, default=False),
        )
