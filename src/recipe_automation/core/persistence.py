"""Record persistence for recipes, executions and scheduled jobs.

Every record is an opaque JSON-serialisable mapping addressed by ``(kind, id)``.
Two backends are provided: an in-process dictionary and a SQLite database.
"""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import PersistenceConfig
from .logger import get_logger

logger = get_logger("persistence")


class RecordStore(ABC):
    """Storage contract used by the engine and the cron job manager."""

    @abstractmethod
    def save(self, kind: str, record_id: str, record: dict[str, Any]) -> None:
        """Insert or replace a record."""

    @abstractmethod
    def load(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Return a copy of a record, or None when it does not exist."""

    @abstractmethod
    def delete(self, kind: str, record_id: str) -> bool:
        """Remove a record. Returns True when something was deleted."""

    @abstractmethod
    def list_all(self, kind: str) -> list[dict[str, Any]]:
        """Return copies of every record of a kind."""

    def close(self) -> None:
        """Release resources held by the store."""


class MemoryRecordStore(RecordStore):
    """Dictionary-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def save(self, kind: str, record_id: str, record: dict[str, Any]) -> None:
        snapshot = json.loads(json.dumps(record, default=str))
        with self._lock:
            self._records.setdefault(kind, {})[record_id] = snapshot

    def load(self, kind: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(kind, {}).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def delete(self, kind: str, record_id: str) -> bool:
        with self._lock:
            return self._records.get(kind, {}).pop(record_id, None) is not None

    def list_all(self, kind: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.get(kind, {}).values()]


class SQLiteRecordStore(RecordStore):
    """SQLite-based record store.

    Uses one thread-local connection per thread so it can be shared between the
    asyncio loop and the scheduler's worker threads. An in-memory database is a
    single connection shared by every thread.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. None for in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self._local = threading.local()
        self._lock = threading.RLock()
        self._shared: sqlite3.Connection | None = None
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if self.db_path == ":memory:":
            if self._shared is None:
                self._shared = sqlite3.connect(self.db_path, check_same_thread=False)
                self._shared.row_factory = sqlite3.Row
            return self._shared
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _init_db(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    kind TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (kind, id)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_kind
                ON records(kind)
            """)
        logger.info("Record store initialized: %s", self.db_path)

    def save(self, kind: str, record_id: str, record: dict[str, Any]) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO records (kind, id, data, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(kind, id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (kind, record_id, json.dumps(record, default=str), datetime.now().isoformat()),
            )

    def load(self, kind: str, record_id: str) -> dict[str, Any] | None:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT data FROM records WHERE kind = ? AND id = ?",
                (kind, record_id),
            )
            row = cursor.fetchone()
        return json.loads(row["data"]) if row else None

    def delete(self, kind: str, record_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM records WHERE kind = ? AND id = ?",
                (kind, record_id),
            )
            return cursor.rowcount > 0

    def list_all(self, kind: str) -> list[dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT data FROM records WHERE kind = ? ORDER BY updated_at",
                (kind,),
            )
            rows = cursor.fetchall()
        return [json.loads(row["data"]) for row in rows]

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if self._shared is not None:
            self._shared.close()
            self._shared = None
            return
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection


def create_record_store(config: PersistenceConfig | None = None) -> RecordStore:
    """Create the record store described by the configuration.

    Args:
        config: Persistence configuration; None selects the in-memory store.

    Returns:
        A RecordStore instance
    """
    if config is None or config.backend == "memory":
        return MemoryRecordStore()
    if not config.path:
        logger.warning("SQLite backend selected without a path; using an in-memory database")
    return SQLiteRecordStore(config.path)


__all__ = [
    "MemoryRecordStore",
    "RecordStore",
    "SQLiteRecordStore",
    "create_record_store",
]
