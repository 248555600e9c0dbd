# =============================================================================
# tests/unit/test_local_store.py
# Unit Tests for the SQLite LocalStore
# =============================================================================

import sqlite3

from tracker_core.offline.local_store import LocalStore
from tracker_core.offline.models import Domain, SyncQueueEntry


class TestRecords:
    """Test full-set persistence"""

    def test_empty_store_loads_nothing(self, local_store):
        assert local_store.load_all() == {}

    def test_round_trip(self, local_store, record_factory):
        records = {
            r.record_id: r
            for r in (
                record_factory(Domain.QUEST, "debut", True),
                record_factory(Domain.STATION, "workbench-1", False, offset=1),
                record_factory(Domain.ITEM_QUANTITY, "mp-133", 5, offset=2),
            )
        }

        assert local_store.save_all(records)
        assert local_store.load_all() == records

        # save_all(load_all()) leaves the store unchanged
        local_store.save_all(local_store.load_all())
        assert local_store.load_all() == records

    def test_save_all_overwrites(self, local_store, record_factory):
        local_store.save_all([record_factory(Domain.QUEST, "a", True)])
        local_store.save_all([record_factory(Domain.QUEST, "b", True)])

        assert set(local_store.load_all()) == {"quest:b"}

    def test_survives_reopen(self, tmp_path, record_factory):
        path = tmp_path / "reopen.db"
        first = LocalStore(path)
        first.save_all([record_factory(Domain.ITEM_QUANTITY, "salewa", 2)])
        first.close()

        second = LocalStore(path)
        assert second.load_all()["item_quantity:salewa"].value == 2
        second.close()


class TestQueue:
    """Test queue persistence"""

    def test_queue_round_trip(self, local_store, record_factory, clock):
        record = record_factory(Domain.QUEST, "debut", True)
        entry = SyncQueueEntry(
            record_id=record.record_id,
            payload=record,
            enqueued_at=clock(),
            attempt_count=2,
            last_attempt_at=clock(),
            user_id="user-1",
            retryable=False,
        )

        assert local_store.save_queue([entry])
        assert local_store.load_queue() == [entry]

    def test_clear_removes_everything(self, local_store, record_factory, clock):
        record = record_factory(Domain.QUEST, "debut", True)
        local_store.save_all([record])
        local_store.save_queue([SyncQueueEntry(record.record_id, record, clock())])

        assert local_store.clear()
        assert local_store.load_all() == {}
        assert local_store.load_queue() == []


class TestFailures:
    """Persistence failures are logged, never raised"""

    def test_unwritable_path_degrades(self, tmp_path, record_factory):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        store = LocalStore(blocker / "progress.db")

        assert store.save_all([record_factory(Domain.QUEST, "debut", True)]) is False
        assert store.load_all() == {}
        assert store.degraded

    def test_sqlite_error_on_save(self, local_store, record_factory, monkeypatch):
        local_store.initialize()

        def broken_transaction():
            raise sqlite3.OperationalError("database or disk is full")

        monkeypatch.setattr(local_store, "transaction", broken_transaction)

        assert local_store.save_all([record_factory(Domain.QUEST, "debut", True)]) is False
        assert local_store.degraded
