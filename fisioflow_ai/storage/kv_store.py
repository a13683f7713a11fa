"""Key-value storage backends used as cache tiers."""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from fisioflow_ai.lib.errors import StorageFull
from fisioflow_ai.models.cache import CacheEntry
from fisioflow_ai.models.response import Response

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Storage interface shared by every cache tier."""

    name: str = "store"

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry without touching its access bookkeeping."""

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an entry. Returns True if something was removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    async def size(self) -> int:
        """Number of stored entries."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """All stored keys."""

    async def purge_expired(self, now: datetime) -> int:
        """Delete entries whose expiry has passed."""
        removed = 0
        for key in await self.keys():
            entry = await self.get(key)
            if entry is not None and entry.is_expired(now):
                await self.delete(key)
                removed += 1
        return removed


class MemoryStore(KeyValueStore):
    """In-process tier bounded to ``max_entries``, evicting least recently accessed."""

    name = "memory"

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}
        self.evictions = 0

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry
        while len(self._entries) > self.max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.last_accessed)
            del self._entries[oldest.key]
            self.evictions += 1

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)

    async def keys(self) -> list[str]:
        return list(self._entries.keys())


class _SQLiteBacked:
    """Connection handling shared by the durable tiers."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Cache database error in {self.db_path}: {e}")
            raise
        finally:
            conn.close()


class SQLiteKVStore(_SQLiteBacked, KeyValueStore):
    """Tier-1: small serialized entries with a hard byte budget.

    Writes that would push the total stored bytes past ``max_bytes`` raise
    ``StorageFull`` and leave the store unchanged.
    """

    name = "tier1"

    def __init__(self, db_path: str | Path, max_bytes: int = 5 * 1024 * 1024):
        super().__init__(db_path)
        self.max_bytes = max_bytes
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    bytes INTEGER NOT NULL
                )
            """)

    async def get(self, key: str) -> CacheEntry | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv_cache WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(row["value"]))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Dropping unreadable tier-1 entry {key}: {e}")
            await self.delete(key)
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        value = json.dumps(entry.to_dict(), ensure_ascii=False)
        needed = len(value.encode("utf-8"))
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(bytes), 0) AS used FROM kv_cache WHERE key != ?", (key,)
            ).fetchone()
            if row["used"] + needed > self.max_bytes:
                raise StorageFull(self.name, needed, self.max_bytes)
            conn.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, bytes) VALUES (?, ?, ?)",
                (key, value, needed),
            )

    async def delete(self, key: str) -> bool:
        with self._get_connection() as conn:
            return conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,)).rowcount > 0

    async def clear(self) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv_cache")

    async def size(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM kv_cache").fetchone()["n"]

    async def keys(self) -> list[str]:
        with self._get_connection() as conn:
            return [row["key"] for row in conn.execute("SELECT key FROM kv_cache").fetchall()]

    async def used_bytes(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COALESCE(SUM(bytes), 0) AS used FROM kv_cache").fetchone()
            return row["used"]


class SQLiteDocumentStore(_SQLiteBacked, KeyValueStore):
    """Tier-2: larger entries in a structured table, one column per field."""

    name = "tier2"

    def __init__(self, db_path: str | Path):
        super().__init__(db_path)
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    response TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    access_count INTEGER DEFAULT 0,
                    last_accessed TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)"
            )

    async def get(self, key: str) -> CacheEntry | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM cache_entries WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return CacheEntry(
            key=row["key"],
            response=Response.from_dict(json.loads(row["response"])),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            access_count=row["access_count"],
            last_accessed=datetime.fromisoformat(row["last_accessed"]),
        )

    async def set(self, key: str, entry: CacheEntry) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries
                    (key, response, created_at, expires_at, access_count, last_accessed)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    key,
                    json.dumps(entry.response.to_dict(), ensure_ascii=False),
                    entry.created_at.isoformat(),
                    entry.expires_at.isoformat(),
                    entry.access_count,
                    entry.last_accessed.isoformat(),
                ),
            )

    async def delete(self, key: str) -> bool:
        with self._get_connection() as conn:
            return conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,)).rowcount > 0

    async def clear(self) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM cache_entries")

    async def size(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS n FROM cache_entries").fetchone()["n"]

    async def keys(self) -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT key FROM cache_entries").fetchall()
            return [row["key"] for row in rows]

    async def purge_expired(self, now: datetime) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?", (now.isoformat(),)
            )
            return cursor.rowcount
