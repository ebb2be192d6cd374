"""Chat history persistence — a versioned JSON blob in a key-value store."""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ollama_chat.errors import StorageError, StorageQuotaExceeded
from ollama_chat.models import ConversationTurn

logger = logging.getLogger(__name__)

STORAGE_KEY = "ollama-chat-history"
STORAGE_VERSION = 1
MAX_STORAGE_SIZE = 5 * 1024 * 1024

# Fallback history length when a save hits the store's quota.
_QUOTA_FALLBACK_TURNS = 10


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class FileStore:
    """Stores each key as a JSON file inside *directory*.

    Args:
        directory: Where the files live. Created on first write.
        max_bytes: Per-value quota; larger writes raise
            ``StorageQuotaExceeded``. ``None`` disables the check.
    """

    def __init__(self, directory: str | Path, max_bytes: int | None = None) -> None:
        self.directory = Path(directory)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {path}", details=str(exc)) from exc

    def set(self, key: str, value: str) -> None:
        data = value.encode("utf-8")
        if self.max_bytes is not None and len(data) > self.max_bytes:
            raise StorageQuotaExceeded(
                f"Value of {len(data)} bytes exceeds quota of {self.max_bytes} bytes"
            )
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}", details=str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}", details=str(exc)) from exc


@dataclass(frozen=True)
class StoredChat:
    messages: list[ConversationTurn]
    model: str | None = None


class ChatStorage:
    """Best-effort save/load of one conversation.

    Saving never raises: failures are logged and reported through the
    boolean result. Loading discards anything it cannot trust (wrong
    version, wrong shape, corrupt JSON) and returns ``None``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_size: int = MAX_STORAGE_SIZE,
        key: str = STORAGE_KEY,
    ) -> None:
        self.store = store
        self.max_size = max_size
        self.key = key

    def _serialize(self, messages: list[ConversationTurn], model: str) -> str:
        return json.dumps(
            {
                "version": STORAGE_VERSION,
                "messages": [turn.to_dict() for turn in messages],
                "model": model,
                "timestamp": int(time.time() * 1000),
            },
            ensure_ascii=False,
        )

    def save(self, messages: list[ConversationTurn], model: str) -> bool:
        """Persist *messages* and the selected *model*.

        Returns:
            True if something was written, False otherwise.
        """
        serialized = self._serialize(messages, model)
        if len(serialized.encode("utf-8")) > self.max_size and len(messages) >= 2:
            logger.warning("Chat history too large, dropping the older half")
            keep = len(messages) // 2
            serialized = self._serialize(messages[-keep:], model)

        try:
            self.store.set(self.key, serialized)
            return True
        except StorageQuotaExceeded:
            logger.warning("Storage quota exceeded, keeping the last %d turns", _QUOTA_FALLBACK_TURNS)
        except StorageError as exc:
            logger.error("Failed to save chat history: %s", exc.details or exc.message)
            return False

        try:
            self.store.set(self.key, self._serialize(messages[-_QUOTA_FALLBACK_TURNS:], model))
            return True
        except StorageError as exc:
            logger.error("Failed to save truncated chat history: %s", exc.message)
            return False

    def load(self) -> StoredChat | None:
        """Return the stored conversation, or None if absent or invalid."""
        try:
            raw = self.store.get(self.key)
        except StorageError as exc:
            logger.error("Failed to load chat history: %s", exc.details or exc.message)
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("Stored chat history is corrupt, clearing it")
            self.clear()
            return None

        if not isinstance(data, dict) or data.get("version") != STORAGE_VERSION:
            logger.warning("Storage version mismatch, clearing old data")
            self.clear()
            return None

        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            logger.error("Invalid stored data structure")
            self.clear()
            return None

        try:
            messages = [ConversationTurn.model_validate(item) for item in raw_messages]
        except ValidationError as exc:
            logger.error("Invalid stored message: %s", exc)
            self.clear()
            return None

        model = data.get("model")
        return StoredChat(messages=messages, model=model if isinstance(model, str) else None)

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except StorageError as exc:
            logger.error("Failed to clear chat history: %s", exc.message)

    def size(self) -> int:
        try:
            raw = self.store.get(self.key)
        except StorageError:
            return 0
        return len(raw.encode("utf-8")) if raw else 0

    def is_near_limit(self) -> bool:
        return self.size() > self.max_size * 0.8
