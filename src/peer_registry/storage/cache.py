"""Key-value cache backends.

Two implementations of the same async ``get``/``set`` contract:

  MemoryCache:  process-local dict with per-key expiry (tests, single runs)
  SqliteCache:  SQLite file in WAL mode, survives restarts

Values are bytes; an optional ``ttl`` in seconds expires the key. Expired
keys are dropped when read, and in bulk by ``purge_expired``.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):
    """Persistent cache capability used by the directory store and geo lookups."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl: float | None = None) -> None: ...

    def purge_expired(self) -> int: ...


class MemoryCache:
    """In-process cache with lazy expiry."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[bytes, float | None]] = {}

    async def get(self, key: str) -> bytes | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        self._data[key] = (value, expires_at)

    def purge_expired(self) -> int:
        now = time.time()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqliteCache:
    """SQLite-backed cache.

    Single writer: the registry runs on one event loop, so calls are
    serialized by construction.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None

    def open(self) -> None:
        """Open the database and create the table if needed."""
        self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                expires_at REAL
            )
        """)
        logger.info("Cache opened: %s", self._db_path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    async def get(self, key: str) -> bytes | None:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT value, expires_at FROM cache WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= time.time():
            self._conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            return None
        return bytes(value)

    async def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        assert self._conn is not None
        expires_at = time.time() + ttl if ttl is not None else None
        self._conn.execute(
            "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at),
        )

    def purge_expired(self) -> int:
        """Delete expired keys; returns how many were removed."""
        assert self._conn is not None
        cursor = self._conn.execute(
            "DELETE FROM cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (time.time(),),
        )
        return cursor.rowcount
