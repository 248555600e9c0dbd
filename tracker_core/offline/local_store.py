# =============================================================================
# tracker_core/offline/local_store.py
# Local SQLite Store for Offline Progress
# =============================================================================
"""
LocalStore - durable, on-device copy of the full progress record set.

Features:
- Atomic full overwrite of the record set (one SQLite transaction)
- Durable sync queue in the same database
- Never raises to the caller: persistence failures are logged and the
  engine carries on with in-memory state for the rest of the session
"""

from __future__ import annotations
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from tracker_core.errors import LocalPersistenceError, handle_error
from tracker_core.logging import get_logger
from tracker_core.offline.models import (
    ProgressRecord,
    SyncQueueEntry,
    format_timestamp,
)

logger = get_logger(__name__)


class LocalStore:
    """
    Local SQLite persistence for one device / profile.

    Usage:
        store = LocalStore(Path("local_data/progress.db"))
        records = store.load_all()
        store.save_all(records)
    """

    SCHEMA = {
        "progress_records": """
            CREATE TABLE IF NOT EXISTS progress_records (
                record_id TEXT PRIMARY KEY,
                domain TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                record_id TEXT PRIMARY KEY,
                user_id TEXT,
                payload_json TEXT NOT NULL,
                attempt_count INTEGER DEFAULT 0,
                last_attempt_at TEXT,
                enqueued_at TEXT NOT NULL,
                retryable INTEGER DEFAULT 1
            )
        """,
    }

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """
        Initialize local store.

        Args:
            db_path: Path to SQLite database file (":memory:" for a
                throwaway store)
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False
        self.degraded = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get (or open) the database connection."""
        if self._connection is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # The engine loop may live on a different thread than the creator
            self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> bool:
        """Create tables if needed. Returns False if storage is unusable."""
        if self._initialized:
            return True

        try:
            with self.transaction() as conn:
                for schema in self.SCHEMA.values():
                    conn.execute(schema)
        except (sqlite3.Error, OSError) as e:
            self._fail("initialize", e)
            return False

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")
        return True

    def _fail(self, operation: str, error: Exception) -> None:
        self.degraded = True
        handle_error(
            LocalPersistenceError(
                f"Local {operation} failed: {error}",
                path=str(self.db_path),
                operation=operation,
            )
        )

    # =========================================================================
    # PROGRESS RECORDS
    # =========================================================================

    def load_all(self) -> Dict[str, ProgressRecord]:
        """
        Load every persisted record.

        Returns:
            Map of record_id -> ProgressRecord (empty if storage is unreadable)
        """
        if not self.initialize():
            return {}

        records: Dict[str, ProgressRecord] = {}
        try:
            rows = self._get_connection().execute(
                "SELECT * FROM progress_records ORDER BY record_id"
            ).fetchall()
        except sqlite3.Error as e:
            self._fail("load", e)
            return {}

        for row in rows:
            try:
                record = ProgressRecord.from_dict({
                    "record_id": row["record_id"],
                    "domain": row["domain"],
                    "entity_id": row["entity_id"],
                    "value": json.loads(row["value_json"]),
                    "updated_at": row["updated_at"],
                    "completed_at": row["completed_at"],
                })
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable record {row['record_id']}: {e}")
                continue
            records[record.record_id] = record

        logger.debug(f"Loaded {len(records)} progress records from local store")
        return records

    def save_all(self, records: Union[Dict[str, ProgressRecord], Iterable[ProgressRecord]]) -> bool:
        """
        Replace the persisted record set with ``records``.

        Returns:
            True if the write was committed
        """
        if not self.initialize():
            return False

        values = records.values() if isinstance(records, dict) else records
        rows = [
            (
                record.record_id,
                record.domain.value,
                record.entity_id,
                json.dumps(record.value),
                format_timestamp(record.updated_at),
                format_timestamp(record.completed_at),
            )
            for record in values
        ]

        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM progress_records")
                conn.executemany(
                    """
                    INSERT INTO progress_records
                        (record_id, domain, entity_id, value_json, updated_at, completed_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except (sqlite3.Error, OSError) as e:
            self._fail("save", e)
            return False

        self.degraded = False
        return True

    # =========================================================================
    # SYNC QUEUE
    # =========================================================================

    def load_queue(self) -> List[SyncQueueEntry]:
        """Load persisted queue entries, oldest first."""
        if not self.initialize():
            return []

        try:
            rows = self._get_connection().execute(
                "SELECT * FROM sync_queue ORDER BY enqueued_at ASC"
            ).fetchall()
        except sqlite3.Error as e:
            self._fail("queue load", e)
            return []

        entries = []
        for row in rows:
            try:
                entries.append(SyncQueueEntry.from_dict({
                    "record_id": row["record_id"],
                    "payload": json.loads(row["payload_json"]),
                    "attempt_count": row["attempt_count"],
                    "last_attempt_at": row["last_attempt_at"],
                    "enqueued_at": row["enqueued_at"],
                    "user_id": row["user_id"],
                    "retryable": bool(row["retryable"]),
                }))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable queue entry {row['record_id']}: {e}")
        return entries

    def save_queue(self, entries: Iterable[SyncQueueEntry]) -> bool:
        """Replace the persisted queue with ``entries``."""
        if not self.initialize():
            return False

        rows = [
            (
                entry.record_id,
                entry.user_id,
                json.dumps(entry.payload.to_dict()),
                entry.attempt_count,
                format_timestamp(entry.last_attempt_at),
                format_timestamp(entry.enqueued_at),
                1 if entry.retryable else 0,
            )
            for entry in entries
        ]

        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM sync_queue")
                conn.executemany(
                    """
                    INSERT INTO sync_queue
                        (record_id, user_id, payload_json, attempt_count,
                         last_attempt_at, enqueued_at, retryable)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except (sqlite3.Error, OSError) as e:
            self._fail("queue save", e)
            return False
        return True

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear(self) -> bool:
        """Delete all records and queue entries (reset all progress)."""
        if not self.initialize():
            return False
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM progress_records")
                conn.execute("DELETE FROM sync_queue")
        except (sqlite3.Error, OSError) as e:
            self._fail("clear", e)
            return False
        logger.info("Local progress cleared")
        return True

    def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._initialized = False
