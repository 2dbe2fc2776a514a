"""
Thread-safe SQLite key-value store for playlist-notes.

Every durable slot the application owns (canonical state snapshot,
pending-migration snapshot, backup snapshot, deletion queue, tag sync
queue, device identity) lives under its own stable key in a single
table. Values are JSON documents.

Schema:
    schema_version:  Single row with the store layout version
    kv:              key TEXT PRIMARY KEY, value TEXT (JSON), updated_at TEXT

Each write replaces the whole value of one key inside a transaction, so
a slot is never observed half-written, even if the process dies right
after the call returns.

Usage:
    store = KeyValueStore(storage_dir / "state.db")
    store.set_json(DEVICE_IDENTITY_KEY, {"deviceId": "...", "anonId": "..."})
    identity = store.get_json(DEVICE_IDENTITY_KEY)
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from playlist_notes.core.exceptions import StorageError


STORE_VERSION = 1

# Stable slot keys
APP_STATE_KEY = "sta:app-state"
PENDING_MIGRATION_KEY = "sta:app-state:pending-migration"
BACKUP_KEY = "sta:app-state:backup"
PENDING_DELETIONS_KEY = "sta:pending-note-deletions"
PENDING_TAG_SYNCS_KEY = "sta:pending-tag-syncs"
DEVICE_IDENTITY_KEY = "sta:device-identity"
DEMO_VIEWED_KEY = "sta:demo-viewed"


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class KeyValueStore:
    """
    Thread-safe SQLite key-value store.
    
    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.
    """
    
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        
        if not db_path.parent.exists():
            raise StorageError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )
        
        try:
            self._init_database()
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to initialize key-value store: {e}",
                details={"path": str(db_path)}
            ) from e
    
    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.
        
        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn
    
    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
    
    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)
            
            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()
            
            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (STORE_VERSION,))
            elif row[0] != STORE_VERSION:
                raise StorageError(
                    f"Store version mismatch: expected {STORE_VERSION}, got {row[0]}",
                    details={"expected": STORE_VERSION, "actual": row[0]}
                )
            conn.commit()
    
    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()
    
    # =========================================================================
    # Raw Operations
    # =========================================================================
    
    def get_raw(self, key: str) -> str | None:
        """Return the stored text for a key, or None when the slot is empty."""
        with self._lock:
            with self._get_connection() as conn:
                try:
                    cursor = conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
                    row = cursor.fetchone()
                except sqlite3.Error as e:
                    raise StorageError(f"Failed to read '{key}': {e}", details={"key": key}) from e
                return row[0] if row else None
    
    def set_raw(self, key: str, value: str) -> None:
        """Replace the whole value stored under key."""
        with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.execute("""
                        INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                    """, (key, value, self._now_iso()))
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise StorageError(f"Failed to write '{key}': {e}", details={"key": key}) from e
    
    def delete(self, key: str) -> None:
        with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise StorageError(f"Failed to delete '{key}': {e}", details={"key": key}) from e
    
    def keys(self) -> list[str]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT key FROM kv ORDER BY key")
                return [row[0] for row in cursor.fetchall()]
    
    # =========================================================================
    # JSON Operations
    # =========================================================================
    
    def get_json(self, key: str) -> Any:
        """
        Return the decoded JSON value for key.
        
        Returns None for an empty slot. Raises StorageError when the slot
        holds text that is not valid JSON; callers that must never fail
        (state loading) catch it and degrade.
        """
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(
                f"Slot '{key}' does not contain valid JSON",
                details={"key": key, "original_error": str(e)}
            ) from e
    
    def set_json(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value, ensure_ascii=False, sort_keys=True))
