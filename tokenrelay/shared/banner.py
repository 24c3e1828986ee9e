"""Startup banner and host/import utilities for tokenrelay."""

import os
import sys
from typing import Any, List, Optional


def detect_host() -> str:
    """Detect host: 0.0.0.0 for Docker, 127.0.0.1 otherwise."""
    if os.path.exists("/.dockerenv") or os.environ.get("DOCKER_CONTAINER"):
        return "0.0.0.0"
    return "127.0.0.1"


def resolve_import_string(app_instance: Any) -> Optional[str]:
    """Resolve the import string for an app instance (e.g. 'examples.relay_server:app').

    uvicorn needs it for ``workers > 1`` or ``reload=True``. Returns None
    if the app is not bound to a module-level name of ``__main__``.
    """
    main = sys.modules.get("__main__")
    if not main or not getattr(main, "__file__", None):
        return None

    var_name = next(
        (name for name, obj in vars(main).items() if obj is app_instance and not name.startswith("_")),
        None,
    )
    if not var_name:
        return None

    file_path = os.path.abspath(main.__file__)
    cwd = os.getcwd()
    if not file_path.startswith(cwd):
        return None

    module = os.path.relpath(file_path, cwd).replace(os.sep, ".").removesuffix(".py")
    return f"{module}:{var_name}"


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------

_BANNER_WIDTH = 58

_BANNER_ART: List[str] = [
    r" _        _                          _             ",
    r"| |_ ___ | | _____ _ __  _ __ ___| | __ _ _   _ ",
    r"| __/ _ \| |/ / _ \ '_ \| '__/ _ \ |/ _` | | | |",
    r"| || (_) |   <  __/ | | | | |  __/ | (_| | |_| |",
    r" \__\___/|_|\_\___|_| |_|_|  \___|_|\__,_|\__, |",
    r"                                          |___/ ",
]

_GRADIENT_RGB: List[tuple] = [
    (38, 166, 154),
    (41, 182, 246),
    (66, 133, 244),
    (121, 134, 203),
    (171, 71, 188),
    (236, 64, 122),
]

_BORDER_RGB = (100, 100, 120)


def _rgb(r: int, g: int, b: int, text: str) -> str:
    return f"\033[38;2;{r};{g};{b}m{text}\033[0m"


def _center_line(content: str, width: int) -> str:
    padding = max(width - len(content), 0)
    left = padding // 2
    return " " * left + content + " " * (padding - left)


def _terminal_width() -> int:
    """Detect terminal width with fallback to 80."""
    try:
        return os.get_terminal_size(sys.stderr.fileno()).columns
    except (OSError, ValueError, AttributeError):
        return 80


def print_banner(mode: str, host: str, port: int):
    """Print the tokenrelay banner centered on the terminal."""
    is_tty = hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
    w = _BANNER_WIDTH
    inner = w - 4
    margin = " " * max((_terminal_width() - w) // 2, 0)

    def border(text: str) -> str:
        return _rgb(*_BORDER_RGB, text) if is_tty else text

    rule = border("+" + "-" * (w - 2) + "+")
    empty = border("|") + " " * (w - 2) + border("|")
    out = sys.stderr.write

    out("\n" + margin + rule + "\n")
    out(margin + empty + "\n")
    for i, line in enumerate(_BANNER_ART):
        padded = _center_line(line, inner)
        if is_tty:
            padded = _rgb(*_GRADIENT_RGB[i % len(_GRADIENT_RGB)], padded)
        out(margin + border("| ") + padded + border(" |") + "\n")
    out(margin + empty + "\n")

    for label, value in (("Mode", mode), ("Relay", f"ws://{host}:{port}/ws")):
        raw = f"{label}: {value}"
        left = max(inner - len(raw), 0) // 2
        right = max(inner - len(raw) - left, 0)
        text = f"\033[2m{label}:\033[0m \033[36m{value}\033[0m" if is_tty else raw
        out(margin + border("| ") + " " * left + text + " " * right + border(" |") + "\n")

    out(margin + empty + "\n")
    out(margin + rule + "\n\n")
