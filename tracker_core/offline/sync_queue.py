# =============================================================================
# tracker_core/offline/sync_queue.py
# Durable, Deduplicated Retry Queue
# =============================================================================
"""
SyncQueue - pending remote writes, at most one per record id.

Features:
- Enqueue supersedes: five offline edits of one record leave one entry
  holding the final value
- Durable: every change is written through to the LocalStore
- Drain is reentrancy-guarded: a trigger arriving mid-drain is coalesced
  into one follow-up pass of the running drain
- Failed entries are kept forever (attempt_count grows); ownership
  rejections are parked as non-retryable instead of retried
"""

from __future__ import annotations
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from tracker_core.errors import safe_execute
from tracker_core.logging import get_logger, LogContext
from tracker_core.offline.models import (
    DrainReport,
    ProgressRecord,
    RemoteResult,
    SyncQueueEntry,
    utc_now,
)

logger = get_logger(__name__)


class RecordLocks:
    """
    One asyncio.Lock per record id.

    Serializes remote writes for the same record so an older payload can
    never land after a newer one.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, record_id: str):
        lock = self._locks.setdefault(record_id, asyncio.Lock())
        self._holders[record_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[record_id] -= 1
            if self._holders[record_id] == 0:
                # Drop idle locks so the map doesn't grow with every record
                del self._holders[record_id]
                self._locks.pop(record_id, None)

    def is_locked(self, record_id: str) -> bool:
        lock = self._locks.get(record_id)
        return lock is not None and lock.locked()


class SyncQueue:
    """
    Per-record pending-write queue drained opportunistically.

    Usage:
        queue = SyncQueue(local_store, remote_store, lambda: monitor.user_id)
        queue.load()
        queue.enqueue(record, user_id)
        report = await queue.drain()
    """

    def __init__(
        self,
        local_store,
        remote_store=None,
        user_id_provider: Optional[Callable[[], Optional[str]]] = None,
        clock: Callable[[], datetime] = utc_now,
        locks: Optional[RecordLocks] = None,
    ):
        """
        Args:
            local_store: LocalStore used for durability
            remote_store: RemoteStore to drain into (None = never drains)
            user_id_provider: Returns the user drains run for (None = skip)
            clock: Time source for enqueue/attempt stamps
            locks: Per-record locks shared with the progress store
        """
        self._local_store = local_store
        self._remote_store = remote_store
        self._user_id_provider = user_id_provider or (lambda: None)
        self._clock = clock
        self.locks = locks or RecordLocks()

        self._entries: Dict[str, SyncQueueEntry] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._rerun_requested = False
        self._result_callbacks: List[Callable[[ProgressRecord, RemoteResult], None]] = []

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._entries

    def get(self, record_id: str) -> Optional[SyncQueueEntry]:
        return self._entries.get(record_id)

    def entries(self) -> List[SyncQueueEntry]:
        """Snapshot of queued entries, oldest first."""
        return sorted(self._entries.values(), key=lambda entry: entry.enqueued_at)

    def depth(self, user_id: Optional[str] = None) -> int:
        """
        Entries visible to ``user_id``: its own plus anonymous ones.
        With no user, counts every entry.
        """
        if user_id is None:
            return len(self._entries)
        return sum(1 for entry in self._entries.values() if entry.user_id in (user_id, None))

    def blocked_count(self) -> int:
        """Entries parked after an ownership rejection."""
        return sum(1 for entry in self._entries.values() if not entry.retryable)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def register_result_callback(
        self, callback: Callable[[ProgressRecord, RemoteResult], None]
    ) -> None:
        """Called after every remote attempt made by a drain."""
        if callback not in self._result_callbacks:
            self._result_callbacks.append(callback)

    # =========================================================================
    # MUTATION
    # =========================================================================

    def load(self) -> int:
        """Replace in-memory entries with the persisted queue."""
        self._entries = {entry.record_id: entry for entry in self._local_store.load_queue()}
        if self._entries:
            logger.info(f"Restored {len(self._entries)} pending sync entries")
        return len(self._entries)

    def _persist(self) -> None:
        self._local_store.save_queue(self._entries.values())

    def enqueue(
        self,
        record: ProgressRecord,
        user_id: Optional[str] = None,
        retryable: bool = True,
    ) -> SyncQueueEntry:
        """
        Queue ``record`` for a later remote write.

        An existing entry for the same record id has its payload replaced
        (attempt bookkeeping is kept). A payload older than the queued one
        never replaces it.
        """
        now = self._clock()
        entry = self._entries.get(record.record_id)

        if entry is None:
            entry = SyncQueueEntry(
                record_id=record.record_id,
                payload=record,
                enqueued_at=now,
                user_id=user_id,
                retryable=retryable,
            )
            self._entries[record.record_id] = entry
        elif record.updated_at < entry.payload.updated_at:
            logger.debug(f"Ignoring stale enqueue for {record.record_id}")
            return entry
        else:
            if record != entry.payload:
                entry.payload = record
                # A new value gets a fresh chance after an ownership rejection
                entry.retryable = retryable
            elif not retryable:
                entry.retryable = False
            if user_id is not None:
                entry.user_id = user_id

        self._persist()
        logger.debug(f"Queued {record.record_id} (queue size: {len(self._entries)})")
        return entry

    def discard(self, record_id: str, up_to: Optional[datetime] = None) -> bool:
        """
        Remove an entry.

        Args:
            record_id: Entry to remove
            up_to: Only remove if the queued payload is not newer than this

        Returns:
            True if an entry was removed
        """
        entry = self._entries.get(record_id)
        if entry is None:
            return False
        if up_to is not None and entry.payload.updated_at > up_to:
            return False
        del self._entries[record_id]
        self._persist()
        return True

    def adopt(self, user_id: str) -> int:
        """Assign entries queued while signed out to ``user_id``."""
        adopted = 0
        for entry in self._entries.values():
            if entry.user_id is None:
                entry.user_id = user_id
                adopted += 1
        if adopted:
            self._persist()
            logger.info(f"Adopted {adopted} anonymous sync entries for user {user_id}")
        return adopted

    def unblock(self, user_id: Optional[str] = None) -> int:
        """Make parked entries retryable again (e.g. after re-login)."""
        count = 0
        for entry in self._entries.values():
            if not entry.retryable and (user_id is None or entry.user_id == user_id):
                entry.retryable = True
                count += 1
        if count:
            self._persist()
        return count

    def clear(self, user_id: Optional[str] = None) -> int:
        """Drop all entries (or only those owned by ``user_id`` / anonymous)."""
        if user_id is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            keep = {
                record_id: entry
                for record_id, entry in self._entries.items()
                if entry.user_id not in (user_id, None)
            }
            removed = len(self._entries) - len(keep)
            self._entries = keep
        self._persist()
        return removed

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def drain(self) -> DrainReport:
        """
        Attempt every queued payload owned by the active user.

        Only one drain runs at a time. Calling drain() while one is running
        schedules a single follow-up pass and waits for the combined result.
        """
        if self.is_draining:
            self._rerun_requested = True
            return await asyncio.shield(self._drain_task)

        self._drain_task = asyncio.ensure_future(self._drain_loop())
        return await asyncio.shield(self._drain_task)

    async def wait_idle(self) -> None:
        """Wait for a running drain, including its follow-up pass, to finish."""
        if self.is_draining:
            await asyncio.wait([self._drain_task])

    async def _drain_loop(self) -> DrainReport:
        report = DrainReport()
        while True:
            self._rerun_requested = False
            report.absorb(await self._drain_once())
            if not self._rerun_requested:
                break
        return report

    async def _drain_once(self) -> DrainReport:
        report = DrainReport(passes=1)
        user_id = self._user_id_provider()

        if self._remote_store is None or user_id is None or not self._entries:
            report.skipped = len(self._entries)
            return report

        with LogContext(logger, f"Draining {len(self._entries)} queued writes"):
            for record_id in [entry.record_id for entry in self.entries()]:
                entry = self._entries.get(record_id)
                if entry is None:
                    continue
                if not entry.retryable or entry.user_id not in (user_id, None):
                    report.skipped += 1
                    continue

                async with self.locks.hold(record_id):
                    # Re-read: the entry may have been superseded or removed meanwhile
                    entry = self._entries.get(record_id)
                    if entry is None:
                        continue
                    if not entry.retryable or entry.user_id not in (user_id, None):
                        # parked or re-owned while waiting for the lock
                        report.skipped += 1
                        continue
                    payload = entry.payload
                    report.processed += 1
                    result = await self._remote_store.upsert_records(user_id, [payload])

                if result.success:
                    report.succeeded += 1
                    self.discard(record_id, up_to=payload.updated_at)
                else:
                    report.failed += 1
                    current = self._entries.get(record_id)
                    if current is not None:
                        current.attempt_count += 1
                        current.last_attempt_at = self._clock()
                        if not result.recoverable and current.payload is payload:
                            current.retryable = False
                        self._persist()

                for callback in list(self._result_callbacks):
                    safe_execute(callback, payload, result, error_message="Error in sync result callback")

                if result.auth_expired:
                    logger.warning("Session expired during drain; remaining entries stay queued")
                    break

        logger.info(
            f"Sync queue processed: {report.succeeded} succeeded, "
            f"{report.failed} failed, {len(self._entries)} remaining"
        )
        return report
