"""
Local storage area (SQLite).

A flat key → JSON-text table standing in for the browser's local storage.
Values are always written whole: callers serialize the entire collection
on every change, and the last writer wins.
"""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "agenda" / "agenda.db"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class LocalStorage:
    """SQLite-backed key/value storage with a localStorage-like API."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize storage and create the table if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB_PATH)
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def get_item(self, key: str) -> Optional[str]:
        """Raw stored text, or None when the key is absent."""
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM local_storage WHERE key = ? LIMIT 1",
                (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_item(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO local_storage (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, value, now))
            conn.commit()

    def remove_item(self, key: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key FROM local_storage ORDER BY key").fetchall()
        return [r["key"] for r in rows]

    def clear(self) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM local_storage")
            conn.commit()

    # ── JSON helpers ──────────────────────────────────────────────────────────

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a stored JSON value. Corrupt values read as the default."""
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Ignoring corrupt local storage value for {key}")
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, ensure_ascii=False))
