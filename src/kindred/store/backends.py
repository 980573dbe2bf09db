"""Durable and legacy backends for the state store."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SQLiteBackend:
    """Durable key/value storage using SQLite.

    Each store key maps to one row holding the JSON-encoded container.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the backend with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Writes come from the store's worker thread, one at a time.
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the records table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        conn.commit()

    def is_empty(self) -> bool:
        conn = self._get_connection()
        row = conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
        return row["n"] == 0

    def load_all(self) -> dict[str, Any]:
        """Load every record, decoding its JSON value.

        Rows that fail to decode are skipped and logged.
        """
        conn = self._get_connection()
        records: dict[str, Any] = {}
        for row in conn.execute("SELECT key, value FROM records"):
            try:
                records[row["key"]] = json.loads(row["value"])
            except json.JSONDecodeError as e:
                logger.warning("Skipping corrupt record %s: %s", row["key"], e)
        return records

    def put(self, key: str, payload: str) -> None:
        """Insert or replace one JSON-encoded record."""
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO records (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = datetime('now')
            """,
            (key, payload),
        )
        conn.commit()

    def clear(self) -> None:
        conn = self._get_connection()
        conn.execute("DELETE FROM records")
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class LegacyJSONStore:
    """The older synchronous store: one ``<key>.json`` file per key.

    Only read during the one-time import into the durable backend.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read(self, key: str) -> Any | None:
        """Read a legacy value, or None if missing or unreadable."""
        path = self._path(key)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Cannot import legacy %s: %s", path, e)
            return None

    def write(self, key: str, value: Any) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self._path(key), "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=2)
