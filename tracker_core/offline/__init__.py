# =============================================================================
# tracker_core/offline/__init__.py
# Offline-First Progress Synchronization
# =============================================================================
"""
Offline-First Synchronization Module

Quest completion, hideout builds and collected items work identically
whether internet is available or not; changes made offline reach the cloud
(and other devices) on the next reconnect or login.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                  OFFLINE-FIRST PROGRESS ENGINE                   │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                    ProgressStore                          │  │
│   │     (Single API - quest list / hideout / items use it)    │  │
│   └──────────────────────────────────────────────────────────┘  │
│          │                 │                    │                │
│          ▼                 ▼                    ▼                │
│   ┌─────────────┐   ┌─────────────┐   ┌──────────────────┐     │
│   │ Connectivity│   │  SyncQueue  │   │ ConflictResolver │     │
│   │  Monitor    │   │ (dedup/drain│   │   (LWW merge)    │     │
│   │(net + user) │   │  per record)│   └──────────────────┘     │
│   └─────────────┘   └─────────────┘                             │
│                            │                                     │
│              ┌─────────────┴─────────────┐                      │
│              ▼                           ▼                      │
│        ┌──────────┐               ┌────────────┐                │
│        │  SQLite  │               │  Supabase  │                │
│        │ (Local)  │               │  (Remote)  │                │
│        └──────────┘               └────────────┘                │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from tracker_core.offline import EngineRunner, build_context, Domain

context = build_context()
runner = EngineRunner()
runner.run(context.store.initialize(context.monitor.user_id))

runner.call(context.store.mutate, Domain.QUEST, "debut", True)
print(context.store.get_sync_status().indicator)
"""

from tracker_core.offline.models import (
    ChangeEvent,
    ChangeOrigin,
    Domain,
    DrainReport,
    ProgressRecord,
    RecordState,
    RemoteResult,
    SyncIndicatorState,
    SyncQueueEntry,
    SyncStatusSnapshot,
    make_record_id,
)

from tracker_core.offline.domains import (
    DomainSpec,
    DEFAULT_DOMAINS,
    QUEST_PROGRESS,
    HIDEOUT_PROGRESS,
    ITEM_COLLECTION,
)

from tracker_core.offline.conflict_resolver import (
    MergeOutcome,
    diff_merge,
    merge,
    resolve,
)

from tracker_core.offline.local_store import LocalStore

from tracker_core.offline.remote_store import (
    SupabaseRemoteStore,
    classify_error,
)

from tracker_core.offline.connectivity import ConnectivityMonitor

from tracker_core.offline.sync_queue import (
    RecordLocks,
    SyncQueue,
)

from tracker_core.offline.progress_store import ProgressStore

from tracker_core.offline.context import (
    EngineRunner,
    TrackerContext,
    build_context,
)

__all__ = [
    # Models
    "ChangeEvent",
    "ChangeOrigin",
    "Domain",
    "DrainReport",
    "ProgressRecord",
    "RecordState",
    "RemoteResult",
    "SyncIndicatorState",
    "SyncQueueEntry",
    "SyncStatusSnapshot",
    "make_record_id",
    # Domains
    "DomainSpec",
    "DEFAULT_DOMAINS",
    "QUEST_PROGRESS",
    "HIDEOUT_PROGRESS",
    "ITEM_COLLECTION",
    # Conflict resolution
    "MergeOutcome",
    "diff_merge",
    "merge",
    "resolve",
    # Stores
    "LocalStore",
    "SupabaseRemoteStore",
    "classify_error",
    # Connectivity
    "ConnectivityMonitor",
    # Queue
    "RecordLocks",
    "SyncQueue",
    # Facade
    "ProgressStore",
    # Context
    "EngineRunner",
    "TrackerContext",
    "build_context",
]
