"""
Local persisted state - settings, report history, and last session.

Three independent JSON records under fixed keys in a key-value store.
Unreadable or invalid records are treated as absent, never fatal.
Writes that fail raise StorageError.
"""

import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from fieldreport.models import (
    HistoryItem,
    SessionSnapshot,
    Settings,
    StorageError,
)
from fieldreport.config import (
    HISTORY_KEY,
    MAX_HISTORY_ITEMS,
    SESSION_KEY,
    SETTINGS_KEY,
    STATE_DIR,
)

logger = logging.getLogger(__name__)

_history_adapter = TypeAdapter(list[HistoryItem])


class KeyValueStore(Protocol):
    """String records under string keys, like browser local storage."""

    def read(self, key: str) -> str | None:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store. Used in tests and for throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.records: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self.records.get(key)

    def write(self, key: str, value: str) -> None:
        self.records[key] = value

    def delete(self, key: str) -> None:
        self.records.pop(key, None)


class JsonFileStore:
    """One <key>.json file per record inside a directory."""

    def __init__(self, directory: str | Path = STATE_DIR):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Cannot read %s, treating as absent", path, exc_info=True)
            return None

    def write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e


class LocalState:
    """Typed access to the three persisted records."""

    def __init__(self, store: KeyValueStore, max_history: int = MAX_HISTORY_ITEMS):
        self.store = store
        self.max_history = max_history

    # --- Settings ---

    def load_settings(self) -> Settings:
        raw = self.store.read(SETTINGS_KEY)
        if raw is None:
            return Settings()
        try:
            return Settings.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Stored settings are invalid, using defaults")
            return Settings()

    def save_settings(self, settings: Settings) -> Settings:
        self.store.write(SETTINGS_KEY, settings.model_dump_json())
        return settings

    # --- History ---

    def load_history(self) -> list[HistoryItem]:
        raw = self.store.read(HISTORY_KEY)
        if raw is None:
            return []
        try:
            return _history_adapter.validate_json(raw)
        except PydanticValidationError:
            logger.warning("Stored history is invalid, starting empty")
            return []

    def add_history(self, item: HistoryItem) -> list[HistoryItem]:
        """Prepends item; anything beyond max_history falls off the end."""
        history = [item, *self.load_history()][: self.max_history]
        self._write_history(history)
        return history

    def replace_history(self, item: HistoryItem) -> list[HistoryItem]:
        """Swaps in item for the stored entry with the same id, keeping its position."""
        history = [item if existing.id == item.id else existing for existing in self.load_history()]
        self._write_history(history)
        return history

    def delete_history(self, item_id: str) -> list[HistoryItem]:
        history = [item for item in self.load_history() if item.id != item_id]
        self._write_history(history)
        return history

    def _write_history(self, history: list[HistoryItem]) -> None:
        self.store.write(HISTORY_KEY, _history_adapter.dump_json(history).decode("utf-8"))

    # --- Session ---

    def load_session(self) -> SessionSnapshot | None:
        raw = self.store.read(SESSION_KEY)
        if raw is None:
            return None
        try:
            return SessionSnapshot.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Stored session is invalid, ignoring it")
            return None

    def save_session(self, snapshot: SessionSnapshot) -> None:
        self.store.write(SESSION_KEY, snapshot.model_dump_json())

    def clear_session(self) -> None:
        self.store.delete(SESSION_KEY)
