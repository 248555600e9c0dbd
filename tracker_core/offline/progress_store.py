# =============================================================================
# tracker_core/offline/progress_store.py
# Progress Store - Single API for Online/Offline Progress
# =============================================================================
"""
ProgressStore - the only component the quest list, hideout and item
tracker talk to.

It automatically handles:
- Synchronous local writes (reads never touch the network)
- Background remote writes, one cancellable task per record
- Queueing while offline, signed out or after a failed write
- Last-write-wins reconciliation on login / reconnect
- Change notifications for reactive re-rendering

Usage:
------
store = ProgressStore(local_store, remote_store, monitor)
await store.initialize(user_id)

store.mutate(Domain.QUEST, "debut", True)       # returns immediately
store.read(Domain.QUEST, "debut")               # -> True
store.get_sync_status().indicator               # -> SyncIndicatorState.SYNCED
"""

from __future__ import annotations
import asyncio
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Dict, List, Mapping, Optional, Set

from tracker_core.errors import ProgressValidationError, safe_execute
from tracker_core.logging import get_logger, LogContext
from tracker_core.offline.conflict_resolver import diff_merge
from tracker_core.offline.domains import DEFAULT_DOMAINS, DomainSpec
from tracker_core.offline.models import (
    ChangeEvent,
    ChangeOrigin,
    Domain,
    DrainReport,
    ProgressRecord,
    ProgressValue,
    RecordState,
    RemoteResult,
    SyncStatusSnapshot,
    make_record_id,
    utc_now,
)
from tracker_core.offline.sync_queue import SyncQueue

logger = get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]

# Smallest step used to keep updated_at strictly increasing per record
TICK = timedelta(microseconds=1)


class ProgressStore:
    """
    Offline-first progress facade for one device / session.

    All methods must be called from the event loop the store was
    initialized on; the store never locks its cache.
    """

    def __init__(
        self,
        local_store,
        remote_store=None,
        monitor=None,
        domains: Optional[Mapping[Domain, DomainSpec]] = None,
        clock: Callable[[], datetime] = utc_now,
        queue: Optional[SyncQueue] = None,
    ):
        """
        Args:
            local_store: LocalStore (on-device persistence)
            remote_store: RemoteStore, or None for LocalStore-only mode
            monitor: ConnectivityMonitor supplying online state and user id
            domains: Domain table mapping (defaults to built-in domains)
            clock: Time source; injectable for tests
            queue: SyncQueue override (built from the stores by default)
        """
        if monitor is None:
            from tracker_core.offline.connectivity import ConnectivityMonitor
            monitor = ConnectivityMonitor()

        self._local = local_store
        self._remote = remote_store
        self._monitor = monitor
        self._domains: Dict[Domain, DomainSpec] = dict(domains or DEFAULT_DOMAINS)
        self._clock = clock

        self.queue = queue or SyncQueue(
            local_store,
            remote_store,
            user_id_provider=self._active_user_id,
            clock=clock,
        )
        self.queue.register_result_callback(self._on_drain_result)

        self._cache: Dict[str, ProgressRecord] = {}
        self._states: Dict[str, RecordState] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[str] = set()
        self._background: Set[asyncio.Task] = set()
        self._callbacks: List[ChangeCallback] = []
        self._unsubscribers: List[Callable[[], None]] = []

        self._user_id: Optional[str] = None
        self._session_expired = False
        self._reconciling = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.last_drain_report = DrainReport()
        self._initialized = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def remote_enabled(self) -> bool:
        return self._remote is not None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def monitor(self):
        return self._monitor

    def _active_user_id(self) -> Optional[str]:
        """User remote calls run as; None when signed out or session expired."""
        if self._remote is None or self._session_expired:
            return None
        return self._user_id

    def record_state(self, domain: Domain, entity_id: str) -> Optional[RecordState]:
        return self._states.get(make_record_id(domain, entity_id))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self, user_id: Optional[str] = None) -> None:
        """
        Load local state and, when signed in and online, reconcile.

        Args:
            user_id: Authenticated user, or None for LocalStore-only use
        """
        self._loop = asyncio.get_running_loop()
        self._monitor.bind_loop(self._loop)

        self._cache = self._local.load_all()
        self.queue.load()
        self._states = {
            record_id: RecordState.DIRTY if record_id in self.queue else RecordState.CLEAN
            for record_id in self._cache
        }

        if not self._initialized:
            self._unsubscribers = [
                self._monitor.on_connectivity_restored(self._on_connectivity_restored),
                self._monitor.on_user_changed(self._on_user_changed),
            ]
        self._initialized = True

        self._user_id = user_id
        self._monitor.set_user(user_id, notify=False)

        logger.info(
            f"ProgressStore initialized: {len(self._cache)} records, "
            f"{len(self.queue)} queued, remote={'on' if self.remote_enabled else 'off'}, "
            f"user={user_id or 'anonymous'}"
        )

        if user_id and self.remote_enabled:
            self.queue.adopt(user_id)
            if self._monitor.online:
                await self.reconcile()

    async def close(self) -> None:
        """Let in-flight writes finish, stop the monitor, close storage."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        # joins the probe thread
        await asyncio.to_thread(self._monitor.stop_monitoring)
        await self.wait_for_pending_writes()
        self._local.close()
        self._initialized = False

    # =========================================================================
    # READS (cache only, never I/O)
    # =========================================================================

    def read(self, domain: Domain, entity_id: str, default: Optional[ProgressValue] = None):
        """Current value for an entity (``default`` if never mutated)."""
        record = self._cache.get(make_record_id(domain, entity_id))
        return record.value if record is not None else default

    def get_record(self, domain: Domain, entity_id: str) -> Optional[ProgressRecord]:
        return self._cache.get(make_record_id(domain, entity_id))

    def records(self, domain: Optional[Domain] = None) -> List[ProgressRecord]:
        """All cached records, optionally for one domain."""
        return [
            record for record in self._cache.values()
            if domain is None or record.domain == domain
        ]

    def is_completed(self, domain: Domain, entity_id: str) -> bool:
        return self.read(domain, entity_id) is True

    def completion_count(self, domain: Domain) -> int:
        """Number of completed quests / built station levels."""
        return sum(1 for record in self.records(domain) if record.value is True)

    def get_sync_status(self) -> SyncStatusSnapshot:
        """Aggregate status for the UI; never a per-record error."""
        if self._remote is None:
            return SyncStatusSnapshot(
                queue_depth=0,
                online=self._monitor.online,
                authenticated=False,
                remote_enabled=False,
            )
        active_user = self._active_user_id()
        return SyncStatusSnapshot(
            queue_depth=self.queue.depth(active_user),
            online=self._monitor.online,
            authenticated=active_user is not None,
            syncing=bool(self._in_flight) or self.queue.is_draining or self._reconciling,
            blocked=self.queue.blocked_count(),
        )

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register a callback for value changes (local or merged from remote).

        Returns:
            Function that removes the subscription
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, record: ProgressRecord, origin: ChangeOrigin) -> None:
        event = ChangeEvent(record.domain, record.entity_id, record.value, origin)
        for callback in list(self._callbacks):
            safe_execute(callback, event, error_message="Error in progress subscriber")

    # =========================================================================
    # WRITES
    # =========================================================================

    def _spec(self, domain: Domain) -> DomainSpec:
        try:
            return self._domains[domain]
        except KeyError:
            raise ProgressValidationError(f"Unknown domain: {domain!r}") from None

    def _stamp(self, previous: Optional[ProgressRecord]) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous.updated_at:
            now = previous.updated_at + TICK
        return now

    def _persist(self) -> None:
        # LocalStore logs and swallows failures; the session keeps its cache
        self._local.save_all(self._cache)

    def mutate(self, domain: Domain, entity_id: str, value: ProgressValue) -> ProgressRecord:
        """
        Record a new value for an entity.

        Writes the cache and LocalStore synchronously and returns; the
        remote write happens in the background and only ever results in a
        queue entry if it fails.

        Raises:
            ProgressValidationError: value or entity id not valid for the domain
        """
        spec = self._spec(domain)
        value = spec.coerce(value, entity_id)
        spec.serialize_key(entity_id)  # rejects ids the remote table cannot key
        record_id = make_record_id(domain, entity_id)

        previous = self._cache.get(record_id)
        now = self._stamp(previous)
        record = ProgressRecord(
            record_id=record_id,
            domain=domain,
            entity_id=entity_id,
            value=value,
            updated_at=now,
            completed_at=spec.completion_time(value, now, previous),
        )

        self._cache[record_id] = record
        self._persist()
        self._states[record_id] = RecordState.DIRTY
        self._emit(record, ChangeOrigin.LOCAL)

        self._schedule_remote_write(record)
        return record

    def adjust_quantity(self, entity_id: str, delta: int) -> ProgressRecord:
        """Add ``delta`` to an item quantity, clamped at zero."""
        current = self.read(Domain.ITEM_QUANTITY, entity_id, 0)
        return self.mutate(Domain.ITEM_QUANTITY, entity_id, max(0, current + int(delta)))

    def _schedule_remote_write(self, record: ProgressRecord) -> None:
        if self._remote is None:
            return

        user_id = self._active_user_id()
        if user_id is None or not self._monitor.online or self._loop is None:
            self.queue.enqueue(record, user_id)
            return

        record_id = record.record_id
        prior = self._pending.get(record_id)
        if prior is not None and not prior.done() and record_id not in self._in_flight:
            # Superseded before it started sending
            prior.cancel()

        task = self._loop.create_task(self._push(record, user_id))
        self._pending[record_id] = task
        task.add_done_callback(partial(self._forget_task, record_id))

    def _forget_task(self, record_id: str, task: asyncio.Task) -> None:
        if self._pending.get(record_id) is task:
            del self._pending[record_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background write for {record_id} failed: {task.exception()}")

    async def _push(self, record: ProgressRecord, user_id: str) -> None:
        record_id = record.record_id
        async with self.queue.locks.hold(record_id):
            if self._cache.get(record_id) is not record:
                return  # a newer value (or a reset) replaced this one
            if user_id != self._active_user_id():
                self.queue.enqueue(record, user_id)
                return
            self._in_flight.add(record_id)
            self._states[record_id] = RecordState.SYNCING
            try:
                result = await self._remote.upsert_records(user_id, [record])
            finally:
                self._in_flight.discard(record_id)

        self._apply_write_result(record, user_id, result)

    def _apply_write_result(
        self,
        record: ProgressRecord,
        user_id: Optional[str],
        result: RemoteResult,
    ) -> None:
        record_id = record.record_id
        current = self._cache.get(record_id) is record

        if result.success:
            # An older queued copy is now obsolete
            self.queue.discard(record_id, up_to=record.updated_at)
            if current and record_id not in self.queue:
                self._states[record_id] = RecordState.CLEAN
            return

        if result.auth_expired:
            self._expire_session()
        if not current:
            return  # the newer value has its own write scheduled

        self.queue.enqueue(record, user_id, retryable=result.recoverable)
        self._states[record_id] = RecordState.DIRTY
        if not result.recoverable:
            logger.warning(f"Remote rejected {record_id}; parked until it changes again")

    def _on_drain_result(self, record: ProgressRecord, result: RemoteResult) -> None:
        record_id = record.record_id
        if self._cache.get(record_id) != record:
            return
        if result.success:
            if record_id not in self.queue:
                self._states[record_id] = RecordState.CLEAN
        else:
            self._states[record_id] = RecordState.DIRTY
            if result.auth_expired:
                self._expire_session()

    def _expire_session(self) -> None:
        if not self._session_expired:
            self._session_expired = True
            # The next sign-in, even as the same user, is then a transition
            self._monitor.set_user(None, notify=False)
            logger.warning("Remote session expired; running LocalStore-only until next sign-in")

    async def wait_for_pending_writes(self) -> None:
        """Wait until background writes and triggered reconciles have settled."""
        while self._pending or self._background:
            tasks = list(self._pending.values()) + list(self._background)
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def reconcile(self) -> bool:
        """
        Merge remote state into the local cache and drain the queue.

        Returns:
            True if a merge happened (signed in, online, fetch succeeded)
        """
        user_id = self._active_user_id()
        if user_id is None or not self._monitor.online:
            return False

        self._reconciling = True
        try:
            with LogContext(logger, f"Reconciling progress for user {user_id}"):
                remote_records: Dict[str, ProgressRecord] = {}
                for domain in self._domains:
                    result = await self._remote.fetch_user_records(user_id, domain)
                    if not result.success:
                        if result.auth_expired:
                            self._expire_session()
                        logger.warning(f"Reconcile aborted: {result.error}")
                        return False
                    for record in result.data or []:
                        remote_records[record.record_id] = record

                if user_id != self._active_user_id():
                    logger.info("User changed during reconcile; discarding fetched state")
                    return False

                self._apply_merge(user_id, remote_records)
        finally:
            self._reconciling = False

        self.last_drain_report = await self.queue.drain()
        return True

    def _apply_merge(self, user_id: str, remote_records: Dict[str, ProgressRecord]) -> None:
        local = dict(self._cache)
        outcome = diff_merge(local, remote_records)

        for record_id in outcome.from_remote:
            record = outcome.merged[record_id]
            # Remote is at least as new as anything queued for this id
            self.queue.discard(record_id, up_to=record.updated_at)
            pending = self._pending.get(record_id)
            if pending is not None and record_id not in self._in_flight:
                pending.cancel()

        for record_id, record in outcome.merged.items():
            if record_id in outcome.local_wins:
                if record_id not in self.queue and record_id not in self._pending:
                    self.queue.enqueue(record, user_id)
                self._states[record_id] = RecordState.DIRTY
            elif record_id not in self.queue and record_id not in self._in_flight:
                self._states[record_id] = RecordState.CLEAN

        self._cache = outcome.merged
        self._persist()

        for record_id in sorted(outcome.from_remote):
            record = outcome.merged[record_id]
            previous = local.get(record_id)
            if previous is None or previous.value != record.value:
                self._emit(record, ChangeOrigin.REMOTE)

        logger.info(
            f"Merged {len(remote_records)} remote records: "
            f"{len(outcome.from_remote)} from remote, {len(outcome.local_wins)} local wins"
        )

    async def retry_sync(self) -> DrainReport:
        """Manual "retry sync": reconcile, then drain whatever is left."""
        self.queue.unblock(self._active_user_id())
        if await self.reconcile():
            return self.last_drain_report
        return await self.queue.drain()

    # =========================================================================
    # RESET
    # =========================================================================

    async def reset_all(self) -> bool:
        """
        Clear every record for this user, locally and (best effort) remotely.

        Returns:
            True if the remote copy was cleared too (or there is none)
        """
        sending = []
        for record_id, task in list(self._pending.items()):
            if record_id in self._in_flight:
                sending.append(task)
            else:
                task.cancel()

        self._cache = {}
        self._states = {}
        self.queue.clear(self._user_id)
        self._local.save_all({})
        logger.info("Progress cleared locally")

        # Writes already on the wire must land before the delete, not after it
        if sending:
            await asyncio.gather(*sending, return_exceptions=True)
        await self.queue.wait_idle()

        user_id = self._active_user_id()
        if user_id is None:
            return self._remote is None
        if not self._monitor.online:
            logger.warning("Offline: remote progress not cleared")
            return False

        cleared = True
        for domain in self._domains:
            result = await self._remote.delete_user_records(user_id, domain)
            if not result.success:
                cleared = False
                if result.auth_expired:
                    self._expire_session()
        return cleared

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        if self._loop is None:
            coro.close()
            return None
        task = self._loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_connectivity_restored(self) -> None:
        if self._active_user_id() is None:
            return
        logger.info("Connection restored - reconciling and processing sync queue")
        self._spawn(self.reconcile())

    def _on_user_changed(self, user_id: Optional[str]) -> None:
        self._user_id = user_id
        self._session_expired = False
        if user_id is None:
            logger.info("Signed out - continuing in LocalStore-only mode")
            return
        if self._remote is None:
            return
        self.queue.adopt(user_id)
        self.queue.unblock(user_id)
        self._spawn(self.reconcile())
