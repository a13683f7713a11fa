"""SQLite persistence for knowledge documents, usage trackers, metrics and alerts."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Manages SQLite database connections and document tables."""

    def __init__(self, db_path: str | Path):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Get database connection with context management."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema if not exists."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            # One JSON document per knowledge entry
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS knowledge_entries (
                    entry_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    document TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # One usage tracker document per provider
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS usage_trackers (
                    provider TEXT PRIMARY KEY,
                    document TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Append-only query metrics
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS query_metrics (
                    query_id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    document TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS alerts (
                    alert_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    resolved BOOLEAN DEFAULT 0,
                    document TEXT NOT NULL
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_knowledge_tenant ON knowledge_entries(tenant_id)"
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_metrics_ts ON query_metrics(timestamp)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at)")

            logger.info(f"Database schema initialized at {self.db_path}")

    # Knowledge documents
    def save_knowledge(self, entry_id: str, tenant_id: str, document: dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO knowledge_entries (entry_id, tenant_id, document, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (entry_id, tenant_id, json.dumps(document, default=str), document["updated_at"]),
            )

    def get_knowledge(self, entry_id: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM knowledge_entries WHERE entry_id = ?", (entry_id,)
            ).fetchone()
            return json.loads(row["document"]) if row else None

    def delete_knowledge(self, entry_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM knowledge_entries WHERE entry_id = ?", (entry_id,))
            return cursor.rowcount > 0

    def list_knowledge(self, tenant_id: str | None = None) -> list[tuple[str, str]]:
        """List raw knowledge documents.

        Args:
            tenant_id: Restrict to one tenant, or None for all

        Returns:
            List of (entry_id, raw JSON document) tuples
        """
        with self._get_connection() as conn:
            if tenant_id is None:
                rows = conn.execute(
                    "SELECT entry_id, document FROM knowledge_entries ORDER BY rowid"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT entry_id, document FROM knowledge_entries "
                    "WHERE tenant_id = ? ORDER BY rowid",
                    (tenant_id,),
                ).fetchall()
            return [(row["entry_id"], row["document"]) for row in rows]

    # Usage trackers
    def save_usage_tracker(self, provider: str, document: dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO usage_trackers (provider, document, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                (provider, json.dumps(document)),
            )

    def load_usage_trackers(self) -> dict[str, dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT provider, document FROM usage_trackers").fetchall()
            return {row["provider"]: json.loads(row["document"]) for row in rows}

    # Metrics
    def append_metric(self, query_id: str, timestamp: str, document: dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO query_metrics (query_id, timestamp, document) "
                "VALUES (?, ?, ?)",
                (query_id, timestamp, json.dumps(document)),
            )

    def load_metrics(self, since: str | None = None) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            if since is None:
                rows = conn.execute(
                    "SELECT document FROM query_metrics ORDER BY timestamp"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT document FROM query_metrics WHERE timestamp >= ? ORDER BY timestamp",
                    (since,),
                ).fetchall()
            return [json.loads(row["document"]) for row in rows]

    def prune_metrics(self, before: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM query_metrics WHERE timestamp < ?", (before,))
            return cursor.rowcount

    # Alerts
    def save_alert(self, alert_id: str, created_at: str, resolved: bool, document: dict) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO alerts (alert_id, created_at, resolved, document) "
                "VALUES (?, ?, ?, ?)",
                (alert_id, created_at, resolved, json.dumps(document)),
            )

    def load_alerts(self, include_resolved: bool = True) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            query = "SELECT document FROM alerts"
            if not include_resolved:
                query += " WHERE resolved = 0"
            rows = conn.execute(query + " ORDER BY created_at").fetchall()
            return [json.loads(row["document"]) for row in rows]
