"""
SQLite persistence for the watchlist and settings.

Thread-safe — one shared connection opened with check_same_thread=False
and explicit locking. The DB file is created automatically.

Settings are a plain key-value table holding JSON values.
"""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Any, Optional

import structlog

from .models import WatchEntry

log = structlog.get_logger()

DB_PATH = "portwatch.db"  # overridden by config.storage.db_path

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    host TEXT NOT NULL,
    port INTEGER NOT NULL,
    endpoint_path TEXT,
    label TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class WatchlistDatabase:
    """Thread-safe SQLite store for watch entries and settings."""

    def __init__(self, db_path: str = DB_PATH):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        log.info("database_initialized", path=db_path)

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Entries
    # =========================================================================

    def insert_entry(self, entry: WatchEntry):
        """Append an entry; insertion order is kept by rowid."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO entries
                   (id, host, port, endpoint_path, label, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.host,
                    entry.port,
                    entry.endpoint_path,
                    entry.label,
                    entry.created_at.isoformat(),
                )
            )
            self._conn.commit()

    def update_entry(self, entry: WatchEntry):
        with self._lock:
            self._conn.execute(
                """UPDATE entries SET
                   host = ?, port = ?, endpoint_path = ?, label = ?
                   WHERE id = ?""",
                (entry.host, entry.port, entry.endpoint_path, entry.label, entry.id)
            )
            self._conn.commit()

    def delete_entry(self, entry_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM entries WHERE id = ?", (entry_id,)
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def list_entries(self) -> list[WatchEntry]:
        """All entries in the order they were added."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM entries ORDER BY rowid"
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key: str) -> Optional[Any]:
        """Decoded JSON value for ``key``; None if missing or unreadable."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            log.warning("setting_unreadable", key=key, error=str(e))
            return None

    def set_setting(self, key: str, value: Any):
        with self._lock:
            self._conn.execute(
                """INSERT INTO settings (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, json.dumps(value))
            )
            self._conn.commit()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> WatchEntry:
        return WatchEntry(
            id=row["id"],
            host=row["host"],
            port=row["port"],
            endpoint_path=row["endpoint_path"],
            label=row["label"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
