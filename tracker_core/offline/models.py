# =============================================================================
# tracker_core/offline/models.py
# Progress Records, Queue Entries and Sync Status
# =============================================================================
"""
Data model shared by every component of the synchronization engine.

A ``ProgressRecord`` is the unit of synchronization: one quest, hideout
station level or item quantity for one user. Records are immutable; every
mutation produces a new record with a newer ``updated_at``.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

import pandas as pd

from tracker_core.errors import RemoteAuthExpiredError, TrackerError


ProgressValue = Union[bool, int]


class Domain(Enum):
    """Progress categories sharing the same synchronization contract."""
    QUEST = "quest"
    STATION = "station"
    ITEM_QUANTITY = "item_quantity"


class RecordState(Enum):
    """Per-record sync state."""
    CLEAN = "clean"         # Confirmed on the remote, nothing queued
    DIRTY = "dirty"         # Local mutation not yet confirmed
    SYNCING = "syncing"     # Remote write in flight


class ChangeOrigin(Enum):
    """Where a change notification came from."""
    LOCAL = "local"
    REMOTE = "remote"


class SyncIndicatorState(Enum):
    """Aggregate status shown to the user."""
    OFFLINE = "offline"
    SYNCING = "syncing"
    SYNCED = "synced"
    PENDING_RETRY = "pending-retry"
    LOCAL_ONLY = "local-only"


def make_record_id(domain: Domain, entity_id: str) -> str:
    """Build the record id for an entity ("quest:<id>", "station:<id>", ...)."""
    return f"{domain.value}:{entity_id}"


def utc_now() -> datetime:
    """Default engine clock."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp coming from SQLite or Supabase.

    Accepts datetimes, ISO-8601 strings (with "Z", offsets or none) and
    Postgres timestamptz output. Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    stamp = pd.to_datetime(value, utc=True)
    if pd.isna(stamp):
        return None
    return stamp.to_pydatetime()


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp as ISO-8601 (None passes through)."""
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class ProgressRecord:
    """One user's progress on one entity."""
    record_id: str
    domain: Domain
    entity_id: str
    value: ProgressValue
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        domain: Domain,
        entity_id: str,
        value: ProgressValue,
        updated_at: datetime,
        completed_at: Optional[datetime] = None,
    ) -> ProgressRecord:
        """Build a record, deriving its id from domain and entity."""
        return cls(
            record_id=make_record_id(domain, entity_id),
            domain=domain,
            entity_id=entity_id,
            value=value,
            updated_at=updated_at,
            completed_at=completed_at,
        )

    def with_value(
        self,
        value: ProgressValue,
        updated_at: datetime,
        completed_at: Optional[datetime] = None,
    ) -> ProgressRecord:
        return replace(self, value=value, updated_at=updated_at, completed_at=completed_at)

    def to_dict(self) -> Dict[str, Any]:
        """Plain, JSON-serializable representation."""
        return {
            "record_id": self.record_id,
            "domain": self.domain.value,
            "entity_id": self.entity_id,
            "value": self.value,
            "updated_at": format_timestamp(self.updated_at),
            "completed_at": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProgressRecord:
        domain = Domain(data["domain"])
        return cls(
            record_id=data.get("record_id") or make_record_id(domain, data["entity_id"]),
            domain=domain,
            entity_id=data["entity_id"],
            value=data["value"],
            updated_at=parse_timestamp(data["updated_at"]),
            completed_at=parse_timestamp(data.get("completed_at")),
        )


@dataclass
class SyncQueueEntry:
    """A pending remote write; at most one per record id."""
    record_id: str
    payload: ProgressRecord
    enqueued_at: datetime
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    user_id: Optional[str] = None   # None = queued while signed out
    retryable: bool = True          # False after an ownership rejection

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "payload": self.payload.to_dict(),
            "enqueued_at": format_timestamp(self.enqueued_at),
            "attempt_count": self.attempt_count,
            "last_attempt_at": format_timestamp(self.last_attempt_at),
            "user_id": self.user_id,
            "retryable": self.retryable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncQueueEntry:
        return cls(
            record_id=data["record_id"],
            payload=ProgressRecord.from_dict(data["payload"]),
            enqueued_at=parse_timestamp(data["enqueued_at"]),
            attempt_count=int(data.get("attempt_count", 0)),
            last_attempt_at=parse_timestamp(data.get("last_attempt_at")),
            user_id=data.get("user_id"),
            retryable=bool(data.get("retryable", True)),
        )


@dataclass(frozen=True)
class ChangeEvent:
    """Notification sent to subscribers whenever a value changes."""
    domain: Domain
    entity_id: str
    value: ProgressValue
    origin: ChangeOrigin


@dataclass
class RemoteResult:
    """
    Normalized outcome of a remote store call.

    Every remote failure ends up here; nothing raises past the adapter.
    """
    success: bool
    recoverable: bool = True
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    auth_expired: bool = False

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> RemoteResult:
        """Create a successful result"""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        recoverable: bool = True,
        auth_expired: bool = False,
    ) -> RemoteResult:
        """Create a failed result"""
        return cls(
            success=False,
            recoverable=recoverable,
            error=error,
            error_code=error_code,
            auth_expired=auth_expired,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> RemoteResult:
        """Create a failed result from a tracker exception"""
        if isinstance(e, TrackerError):
            return cls.fail(
                e.message,
                error_code=e.code,
                recoverable=e.recoverable,
                auth_expired=isinstance(e, RemoteAuthExpiredError),
            )
        return cls.fail(str(e), error_code="EXCEPTION")


@dataclass
class DrainReport:
    """Counts from one drain of the sync queue."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    passes: int = 0

    def absorb(self, other: DrainReport) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.passes += other.passes


@dataclass(frozen=True)
class SyncStatusSnapshot:
    """What the UI is allowed to know about synchronization."""
    queue_depth: int
    online: bool
    authenticated: bool
    syncing: bool = False
    blocked: int = 0
    remote_enabled: bool = True

    @property
    def indicator(self) -> SyncIndicatorState:
        if not self.remote_enabled:
            return SyncIndicatorState.LOCAL_ONLY
        if not self.online:
            return SyncIndicatorState.OFFLINE
        if self.syncing:
            return SyncIndicatorState.SYNCING
        if self.queue_depth > 0:
            return SyncIndicatorState.PENDING_RETRY
        return SyncIndicatorState.SYNCED

    def to_dict(self) -> Dict[str, Any]:
        """Get status information for UI display."""
        return {
            "queue_depth": self.queue_depth,
            "online": self.online,
            "authenticated": self.authenticated,
            "syncing": self.syncing,
            "blocked": self.blocked,
            "remote_enabled": self.remote_enabled,
            "indicator": self.indicator.value,
        }
