from __future__ import annotations

import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import StorageError

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv (
  key        TEXT PRIMARY KEY,
  value      TEXT NOT NULL,
  updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS auth_events (
  id        INTEGER PRIMARY KEY AUTOINCREMENT,
  ts        TEXT NOT NULL DEFAULT (datetime('now')),
  event     TEXT NOT NULL,
  outcome   TEXT NOT NULL,
  reason    TEXT
);
"""


def ensure_parent_dir(db_path: str) -> None:
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        ensure_parent_dir(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


class KeyValueStore(ABC):
    """String key/value storage used by every component of the security layer."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteStore(KeyValueStore):
    """
    Plain local storage backed by the `kv` table.

    Survives restarts, not reinstalls. Holds no secret material: lockout
    counters, the trusted device set and the biometric preference.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str) -> Optional[str]:
        try:
            row = self.conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error("kv read failed key=%s: %s", key, e)
            raise StorageError("Local storage is unavailable.") from e
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO kv(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value=excluded.value,
                  updated_at=datetime('now')
                """,
                (key, str(value)),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("kv write failed key=%s: %s", key, e)
            raise StorageError("Local storage is unavailable.") from e

    def delete(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv WHERE key=?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("kv delete failed key=%s: %s", key, e)
            raise StorageError("Local storage is unavailable.") from e


class KeyringSecureStore(KeyValueStore):
    """
    Secure storage through the OS credential vault (Keychain, Credential
    Manager, Secret Service, Android keystore) via `keyring`.

    Every backend failure surfaces as StorageError; callers never retry.
    """

    def __init__(self, service: str = "pinguard", backend: Optional[KeyringBackend] = None):
        self.service = service
        self._backend = backend

    @property
    def backend(self):
        return self._backend if self._backend is not None else keyring.get_keyring()

    def get(self, key: str) -> Optional[str]:
        try:
            return self.backend.get_password(self.service, key)
        except KeyringError as e:
            logger.error("secure store read failed key=%s: %s", key, e)
            raise StorageError() from e

    def set(self, key: str, value: str) -> None:
        try:
            self.backend.set_password(self.service, key, value)
        except KeyringError as e:
            logger.error("secure store write failed key=%s: %s", key, e)
            raise StorageError() from e

    def delete(self, key: str) -> None:
        try:
            self.backend.delete_password(self.service, key)
        except PasswordDeleteError:
            # already absent
            return
        except KeyringError as e:
            logger.error("secure store delete failed key=%s: %s", key, e)
            raise StorageError() from e
