"""Local persisted client state: chat history and UI preferences."""

import json
import os
from typing import Any, Dict, Iterator, List, Optional, Tuple

from tokenrelay.shared.entities import ChatMessage, Role
from tokenrelay.shared.logger import create_logger

MESSAGES_KEY = "chat:messages"
DARK_MODE_KEY = "ui:dark"
DEFAULT_GREETING = "Hello! I'm your AI assistant. How can I help you today?"

_logger = create_logger("tokenrelay.client.store")


class LocalStore:
    """Key/value state persisted as one JSON file.

    Pass ``path=None`` for a memory-only store. Every write rewrites the
    file through a temporary file, so a crash never leaves it half written.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            _logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Ignoring state file %s: not a JSON object", self.path)
            return {}
        return data

    def _flush(self):
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        self._data[key] = value
        self._flush()

    def remove(self, key: str):
        if self._data.pop(key, None) is not None:
            self._flush()


class ChatHistoryStore:
    """Append-only sequence of completed messages, persisted under ``chat:messages``.

    A store without saved history starts with a greeting from the
    assistant. ``clear()`` drops the saved key as well.
    """

    def __init__(self, store: Optional[LocalStore] = None, greeting: Optional[str] = DEFAULT_GREETING):
        self._store = store or LocalStore()
        self._messages: List[ChatMessage] = []
        if MESSAGES_KEY in self._store:
            self._messages = self._load(self._store.get(MESSAGES_KEY))
        elif greeting:
            self._messages = [ChatMessage(role=Role.ASSISTANT, content=greeting)]

    def _load(self, raw: Any) -> List[ChatMessage]:
        if not isinstance(raw, list):
            if raw is not None:
                _logger.warning("Ignoring saved history: not a list")
            return []
        messages = []
        for index, item in enumerate(raw):
            try:
                messages.append(ChatMessage.from_dict(item))
            except (KeyError, ValueError, TypeError) as exc:
                _logger.warning("Skipping saved message %d: %s", index, exc)
        return messages

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(tuple(self._messages))

    def __getitem__(self, index):
        return self._messages[index]

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        self._store.set(MESSAGES_KEY, [m.to_dict() for m in self._messages])
        return message

    def clear(self):
        self._messages = []
        self._store.remove(MESSAGES_KEY)


class Preferences:
    """UI preferences stored next to the history (``ui:*`` keys)."""

    def __init__(self, store: LocalStore):
        self._store = store

    @property
    def dark_mode(self) -> bool:
        return bool(self._store.get(DARK_MODE_KEY, True))

    @dark_mode.setter
    def dark_mode(self, value: bool):
        self._store.set(DARK_MODE_KEY, bool(value))

    def toggle_dark_mode(self) -> bool:
        self.dark_mode = not self.dark_mode
        return self.dark_mode
