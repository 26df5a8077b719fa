"""Durable key/value storage backing the cart."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.commit()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class KeyValueStore:
    """String blobs under string keys, one SQLite file per store.

    Each ``set`` is a single committed statement, so a value is either fully
    replaced or left as it was.
    """

    def __init__(self, path: Path, manager: SQLiteManager | None = None) -> None:
        self.path = Path(path)
        self._manager = manager or SQLiteManager()

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._manager.connect(self.path)

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def set(self, key: str, value: str) -> None:
        conn = self._conn
        with conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, value),
            )

    def delete(self, key: str) -> None:
        conn = self._conn
        with conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def close(self) -> None:
        self._manager.close_all()


__all__ = ["KeyValueStore", "SQLiteManager"]
