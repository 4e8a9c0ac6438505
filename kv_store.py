"""Durable key-value store holding every record of the service as JSON."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from typing import Any, Iterable, Optional

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_store: Optional["KeyValueStore"] = None


class StoreUnavailable(RuntimeError):
    """Raised when the backing database cannot be read or written."""


class KeyValueStore:
    """Opaque map from string key to JSON value.

    A single ``set`` is atomic. There are no transactions spanning several
    keys, so callers that write a record and an index must tolerate a crash
    between the two writes.
    """

    def __init__(self, path: str, max_connections: int = 10):
        self.path = path
        self._pool = SQLiteConnectionPool(path, max_connections=max_connections)
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key        TEXT PRIMARY KEY,
                value      TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    # -------------- low level --------------
    def _exec(self, sql: str, params: Iterable = ()) -> None:
        try:
            with self._pool.get_connection() as con:
                con.execute(sql, tuple(params))
                con.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"kv write failed: {exc}") from exc

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        try:
            with self._pool.get_connection() as con:
                return con.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"kv read failed: {exc}") from exc

    @staticmethod
    def _decode(key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable value stored under %s", key)
            return None

    # -------------- public API --------------
    def get(self, key: str) -> Any:
        rows = self._query("SELECT value FROM kv_store WHERE key = ?", [key])
        if not rows:
            return None
        return self._decode(key, rows[0]["value"])

    def set(self, key: str, value: Any) -> None:
        self._exec(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = CURRENT_TIMESTAMP
            """,
            [key, json.dumps(value, ensure_ascii=False)],
        )

    def delete(self, key: str) -> None:
        self._exec("DELETE FROM kv_store WHERE key = ?", [key])

    def items_by_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        """Return ``(key, value)`` pairs whose key starts with ``prefix``, in key order."""
        rows = self._query(
            "SELECT key, value FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            [len(prefix), prefix],
        )
        items = []
        for row in rows:
            value = self._decode(row["key"], row["value"])
            if value is not None:
                items.append((row["key"], value))
        return items

    def get_by_prefix(self, prefix: str) -> list[Any]:
        return [value for _, value in self.items_by_prefix(prefix)]

    def close(self) -> None:
        self._pool.close()


def get_store() -> KeyValueStore:
    """Return the process-wide store, opening it on first use."""
    global _store
    if _store is None:
        max_connections = int(os.getenv("DB_MAX_CONNECTIONS", "10"))
        _store = KeyValueStore(DB_PATH, max_connections=max_connections)
    return _store


def init(path: Optional[str] = None) -> KeyValueStore:
    """(Re)open the process-wide store, optionally at a new ``path``."""
    global DB_PATH, _store
    if path is not None:
        DB_PATH = path
    if _store is not None:
        _store.close()
        _store = None
    return get_store()
