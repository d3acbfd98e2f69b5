"""SQLite storage backend for sessions.

Stores each session record as a JSON document, with images, wireframes and
component version histories in child tables that cascade on session delete.
"""

import json
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.core.errors import CorruptRecordError, StorageError

logger = logging.getLogger(__name__)

# SQL Schema
SCHEMA_SQL = """
-- Sessions table
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    record TEXT NOT NULL,  -- JSON
    created_at TEXT,
    updated_at TEXT NOT NULL
);

-- Iteration images
CREATE TABLE IF NOT EXISTS images (
    session_id TEXT NOT NULL,
    key TEXT NOT NULL,
    data BLOB NOT NULL,
    PRIMARY KEY (session_id, key),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- Component version histories
CREATE TABLE IF NOT EXISTS component_versions (
    session_id TEXT NOT NULL,
    wireframe_id TEXT NOT NULL,
    component_id TEXT NOT NULL,
    record TEXT NOT NULL,  -- JSON
    updated_at TEXT NOT NULL,
    PRIMARY KEY (session_id, wireframe_id, component_id),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- Wireframes table
CREATE TABLE IF NOT EXISTS wireframes (
    session_id TEXT NOT NULL,
    wireframe_id TEXT NOT NULL,
    record TEXT NOT NULL,  -- JSON
    updated_at TEXT NOT NULL,
    PRIMARY KEY (session_id, wireframe_id),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions(created_at);
"""


class SQLiteStorage:
    """SQLite-based session storage backend.

    Features:
    - One JSON document per session, replaced in a single transaction
    - Image blobs, wireframe and component version documents keyed per session
    - Cascading deletes

    Args:
        db_path: Path to SQLite database file.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection, failing if not initialized."""
        if self._conn is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Initialize storage (create database and tables)."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e

        logger.info(f"Initialized SQLite storage at {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _execute(self, sql: str, params: tuple = (), key: Any = None) -> sqlite3.Cursor:
        conn = self._get_conn()
        try:
            with self._lock, conn:
                return conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}", key=key) from e

    def _fetchone(self, sql: str, params: tuple, key: Any = None) -> sqlite3.Row | None:
        conn = self._get_conn()
        try:
            with self._lock:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}", key=key) from e

    def _fetchall(self, sql: str, params: tuple = (), key: Any = None) -> list[sqlite3.Row]:
        conn = self._get_conn()
        try:
            with self._lock:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}", key=key) from e

    @staticmethod
    def _decode(raw: str, key: str) -> dict[str, Any]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptRecordError(f"Invalid JSON record for {key}: {e}", key=key) from e
        if not isinstance(data, dict):
            raise CorruptRecordError(f"Expected a JSON object for {key}", key=key)
        return data

    # =========================================================================
    # Session Records
    # =========================================================================

    def read_session(self, session_id: str) -> dict[str, Any] | None:
        row = self._fetchone(
            "SELECT record FROM sessions WHERE id = ?", (session_id,), key=session_id
        )
        if row is None:
            return None
        return self._decode(row["record"], session_id)

    def write_session(self, session_id: str, record: dict[str, Any]) -> None:
        self._execute(
            """
            INSERT INTO sessions (id, record, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                record = excluded.record,
                updated_at = excluded.updated_at
            """,
            (
                session_id,
                json.dumps(record),
                record.get("created_at"),
                datetime.now(UTC).isoformat(),
            ),
            key=session_id,
        )

    def list_session_ids(self) -> list[str]:
        rows = self._fetchall("SELECT id FROM sessions")
        return [row["id"] for row in rows]

    def delete_session(self, session_id: str) -> bool:
        cursor = self._execute(
            "DELETE FROM sessions WHERE id = ?", (session_id,), key=session_id
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Images
    # =========================================================================

    def write_image(self, session_id: str, key: str, data: bytes) -> str:
        self._execute(
            """
            INSERT INTO images (session_id, key, data) VALUES (?, ?, ?)
            ON CONFLICT(session_id, key) DO UPDATE SET data = excluded.data
            """,
            (session_id, key, sqlite3.Binary(data)),
            key=key,
        )
        return f"sqlite://{session_id}/{key}"

    def read_image(self, session_id: str, key: str) -> bytes | None:
        row = self._fetchone(
            "SELECT data FROM images WHERE session_id = ? AND key = ?",
            (session_id, key),
            key=key,
        )
        return bytes(row["data"]) if row else None

    # =========================================================================
    # Wireframes
    # =========================================================================

    def write_wireframe(
        self, session_id: str, wireframe_id: str, record: dict[str, Any]
    ) -> None:
        self._execute(
            """
            INSERT INTO wireframes (session_id, wireframe_id, record, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(session_id, wireframe_id) DO UPDATE SET
                record = excluded.record,
                updated_at = excluded.updated_at
            """,
            (session_id, wireframe_id, json.dumps(record), datetime.now(UTC).isoformat()),
            key=wireframe_id,
        )

    def read_wireframe(self, session_id: str, wireframe_id: str) -> dict[str, Any] | None:
        row = self._fetchone(
            "SELECT record FROM wireframes WHERE session_id = ? AND wireframe_id = ?",
            (session_id, wireframe_id),
            key=wireframe_id,
        )
        if row is None:
            return None
        return self._decode(row["record"], wireframe_id)

    def list_wireframe_ids(self, session_id: str) -> list[str]:
        rows = self._fetchall(
            "SELECT wireframe_id FROM wireframes WHERE session_id = ? ORDER BY wireframe_id",
            (session_id,),
            key=session_id,
        )
        return [row["wireframe_id"] for row in rows]

    def delete_wireframe(self, session_id: str, wireframe_id: str) -> bool:
        cursor = self._execute(
            "DELETE FROM wireframes WHERE session_id = ? AND wireframe_id = ?",
            (session_id, wireframe_id),
            key=wireframe_id,
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Component Versions
    # =========================================================================

    def write_component_versions(
        self,
        session_id: str,
        wireframe_id: str,
        component_id: str,
        record: dict[str, Any],
    ) -> None:
        self._execute(
            """
            INSERT INTO component_versions
                (session_id, wireframe_id, component_id, record, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(session_id, wireframe_id, component_id) DO UPDATE SET
                record = excluded.record,
                updated_at = excluded.updated_at
            """,
            (
                session_id,
                wireframe_id,
                component_id,
                json.dumps(record),
                datetime.now(UTC).isoformat(),
            ),
            key=component_id,
        )

    def read_component_versions(
        self, session_id: str, wireframe_id: str, component_id: str
    ) -> dict[str, Any] | None:
        row = self._fetchone(
            """
            SELECT record FROM component_versions
            WHERE session_id = ? AND wireframe_id = ? AND component_id = ?
            """,
            (session_id, wireframe_id, component_id),
            key=component_id,
        )
        if row is None:
            return None
        return self._decode(row["record"], component_id)


__all__ = [
    "SQLiteStorage",
]
