"""Persistent key/value storage for credentials and instance settings.

Provides the ConfigStore ABC and two backends: SQLite on disk for the
CLI, and an in-memory dict for tests and dry runs.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import StoreError


if TYPE_CHECKING:
    from .config import TuskSettings


logger = logging.getLogger("tusk.store")

DOMAIN_KEY = "domain"
CLIENT_ID_KEY = "client_id"
CLIENT_SECRET_KEY = "client_secret"
ACCESS_TOKEN_KEY = "access_token"


class ConfigStore(ABC):
    """Abstract string key/value store."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value for ``key`` or None if unset."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Insert or replace ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every key."""

    def close(self) -> None:  # noqa: B027
        """Release backend resources."""

    def __enter__(self) -> ConfigStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MemoryConfigStore(ConfigStore):
    """In-memory store for tests and single-process use."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Initialize the memory store."""
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._data.clear()

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the stored data."""
        with self._lock:
            return dict(self._data)


class SQLiteConfigStore(ConfigStore):
    """SQLite-backed store kept in the user's data directory.

    Parameters
    ----------
    path : str or Path
        Database file. The parent directory is created with mode 0700.
    """

    _SCHEMA = """
    CREATE TABLE IF NOT EXISTS config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );
    """

    def __init__(self, path: str | Path) -> None:
        """Open (and create if needed) the database."""
        self.path = Path(path)
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.executescript(self._SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            msg = f"failed to open database {self.path}: {exc}"
            raise StoreError(msg) from exc
        if os.name == "posix":
            try:
                self.path.chmod(0o600)
            except OSError as exc:
                logger.warning("Could not restrict permissions on %s: %s", self.path, exc)
        logger.debug("Opened config store at %s", self.path)

    def get(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            msg = f"failed to read {key}: {exc}"
            raise StoreError(msg, key=key) from exc
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)", (key, value)
                )
        except sqlite3.Error as exc:
            msg = f"failed to save {key}: {exc}"
            raise StoreError(msg, key=key) from exc

    def delete(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM config WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            msg = f"failed to delete {key}: {exc}"
            raise StoreError(msg, key=key) from exc

    def clear_all(self) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM config")
        except sqlite3.Error as exc:
            msg = f"failed to clear local data: {exc}"
            raise StoreError(msg) from exc

    def close(self) -> None:
        self._conn.close()


def open_store(settings: TuskSettings) -> ConfigStore:
    """Open the on-disk store at the configured location."""
    return SQLiteConfigStore(settings.store.resolve_path())
