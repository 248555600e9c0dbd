# =============================================================================
# tests/unit/test_progress_store.py
# Unit Tests for the ProgressStore Facade
# =============================================================================

import asyncio
import pytest

from tracker_core.errors import ProgressValidationError
from tracker_core.offline.models import (
    ChangeOrigin,
    Domain,
    RecordState,
    SyncIndicatorState,
)


async def wait_until_sending(store, record_id):
    while not store.queue.locks.is_locked(record_id):
        await asyncio.sleep(0)


class TestLocalWrites:
    """mutate() is synchronous and local-first"""

    def test_mutate_then_read(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            store.mutate(Domain.QUEST, "debut", True)
            return store.read(Domain.QUEST, "debut")

        assert asyncio.run(scenario()) is True
        assert store._local.load_all()["quest:debut"].value is True

    def test_read_default_for_unknown(self, make_device):
        store = make_device(with_remote=False)
        asyncio.run(store.initialize())
        assert store.read(Domain.ITEM_QUANTITY, "salewa", 0) == 0
        assert store.get_record(Domain.ITEM_QUANTITY, "salewa") is None

    def test_invalid_value_raises_and_changes_nothing(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            with pytest.raises(ProgressValidationError):
                store.mutate(Domain.QUEST, "debut", "done")

        asyncio.run(scenario())
        assert store.records() == []

    def test_malformed_station_id_raises_and_changes_nothing(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            with pytest.raises(ProgressValidationError):
                store.mutate(Domain.STATION, "workbench", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert store.records() == []
        assert len(store.queue) == 0
        assert store._local.load_all() == {}
        assert remote.upserts == []

    def test_updated_at_strictly_increases(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            first = store.mutate(Domain.ITEM_QUANTITY, "salewa", 1)
            second = store.mutate(Domain.ITEM_QUANTITY, "salewa", 2)
            return first, second

        # frozen clock: stamps must still be ordered
        first, second = asyncio.run(scenario())
        assert second.updated_at > first.updated_at

    def test_completed_at_kept_on_recompletion(self, make_device, clock):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            first = store.mutate(Domain.QUEST, "debut", True)
            clock.advance(60)
            again = store.mutate(Domain.QUEST, "debut", True)
            undone = store.mutate(Domain.QUEST, "debut", False)
            return first, again, undone

        first, again, undone = asyncio.run(scenario())
        assert again.completed_at == first.completed_at
        assert undone.completed_at is None

    def test_adjust_quantity_clamps_at_zero(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            store.adjust_quantity("salewa", 3)
            store.adjust_quantity("salewa", -5)
            return store.read(Domain.ITEM_QUANTITY, "salewa")

        assert asyncio.run(scenario()) == 0

    def test_completion_helpers(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            store.mutate(Domain.QUEST, "a", True)
            store.mutate(Domain.QUEST, "b", True)
            store.mutate(Domain.QUEST, "c", False)
            store.mutate(Domain.STATION, "workbench-1", True)

        asyncio.run(scenario())
        assert store.is_completed(Domain.QUEST, "a")
        assert not store.is_completed(Domain.QUEST, "c")
        assert store.completion_count(Domain.QUEST) == 2
        assert len(store.records(Domain.STATION)) == 1


class TestSubscriptions:
    """Change notifications"""

    def test_local_event_and_unsubscribe(self, make_device):
        store = make_device(with_remote=False)
        events = []

        async def scenario():
            await store.initialize()
            unsubscribe = store.subscribe(events.append)
            store.mutate(Domain.QUEST, "debut", True)
            unsubscribe()
            store.mutate(Domain.QUEST, "debut", False)

        asyncio.run(scenario())
        assert len(events) == 1
        assert events[0].origin is ChangeOrigin.LOCAL
        assert events[0].value is True

    def test_failing_subscriber_does_not_break_mutate(self, make_device):
        store = make_device(with_remote=False)

        def broken(event):
            raise RuntimeError("render failed")

        async def scenario():
            await store.initialize()
            store.subscribe(broken)
            store.mutate(Domain.QUEST, "debut", True)

        asyncio.run(scenario())
        assert store.read(Domain.QUEST, "debut") is True


class TestRemoteWrites:
    """Background remote writes"""

    def test_online_write_reaches_remote(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert remote.value("user-1", "quest:debut") is True
        assert len(store.queue) == 0
        assert store.record_state(Domain.QUEST, "debut") is RecordState.CLEAN
        assert store.get_sync_status().indicator is SyncIndicatorState.SYNCED

    def test_offline_write_is_queued(self, make_device, remote):
        store = make_device(online=False)

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        status = store.get_sync_status()
        assert remote.upserts == []
        assert status.queue_depth == 1
        assert status.indicator is SyncIndicatorState.OFFLINE
        assert store.record_state(Domain.QUEST, "debut") is RecordState.DIRTY

    def test_failed_write_is_queued(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.fail_with("network")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert store.queue.get("quest:debut").payload.value is True
        assert store.get_sync_status().indicator is SyncIndicatorState.PENDING_RETRY

    def test_newer_mutation_supersedes_waiting_write(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.gate = asyncio.Event()
            store.mutate(Domain.ITEM_QUANTITY, "salewa", 1)
            await wait_until_sending(store, "item_quantity:salewa")
            assert store.get_sync_status().indicator is SyncIndicatorState.SYNCING

            store.mutate(Domain.ITEM_QUANTITY, "salewa", 2)
            store.mutate(Domain.ITEM_QUANTITY, "salewa", 3)
            remote.gate.set()
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        # the in-flight write finished, the middle one never went out
        assert [record.value for _, record in remote.upserts] == [1, 3]
        assert remote.value("user-1", "item_quantity:salewa") == 3
        assert store.record_state(Domain.ITEM_QUANTITY, "salewa") is RecordState.CLEAN

    def test_permission_denied_is_parked(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.fail_with("permission")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        status = store.get_sync_status()
        assert status.blocked == 1
        assert status.queue_depth == 1
        assert not store.queue.get("quest:debut").retryable

    def test_auth_expiry_falls_back_to_local_only(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.fail_next(1, "auth")
            store.mutate(Domain.QUEST, "a", True)
            await store.wait_for_pending_writes()
            assert not store.get_sync_status().authenticated

            store.mutate(Domain.QUEST, "b", True)
            await store.wait_for_pending_writes()
            assert len(remote.upserts) == 0
            assert len(store.queue) == 2

            # signing in again (same account) drains what was queued
            store.monitor.set_user("user-1")
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert remote.value("user-1", "quest:a") is True
        assert remote.value("user-1", "quest:b") is True
        assert len(store.queue) == 0


class TestSignedOut:
    """LocalStore-only modes"""

    def test_no_remote_never_queues(self, make_device):
        store = make_device(with_remote=False)

        async def scenario():
            await store.initialize()
            for value in range(5):
                store.mutate(Domain.ITEM_QUANTITY, "salewa", value)
                assert store.get_sync_status().queue_depth == 0

        asyncio.run(scenario())
        status = store.get_sync_status()
        assert status.indicator is SyncIndicatorState.LOCAL_ONLY
        assert not status.authenticated

    def test_anonymous_writes_adopted_on_login(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize()
            store.mutate(Domain.QUEST, "debut", True)
            assert store.queue.get("quest:debut").user_id is None

            store.monitor.set_user("user-1")
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert remote.value("user-1", "quest:debut") is True

    def test_logout_keeps_cache(self, make_device):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()
            store.monitor.set_user(None)
            store.mutate(Domain.QUEST, "other", True)
            await store.wait_for_pending_writes()

        asyncio.run(scenario())
        assert store.read(Domain.QUEST, "debut") is True
        assert store.user_id is None
        assert store.queue.get("quest:other").user_id is None


class TestLifecycle:
    """Restart, retry and reset"""

    def test_restart_restores_cache_and_queue(self, make_device, remote):
        first = make_device("phone", online=False)

        async def offline_session():
            await first.initialize("user-1")
            first.mutate(Domain.QUEST, "debut", True)
            await first.close()

        asyncio.run(offline_session())

        second = make_device("phone", online=False)
        asyncio.run(second.initialize("user-1"))

        assert second.read(Domain.QUEST, "debut") is True
        assert second.record_state(Domain.QUEST, "debut") is RecordState.DIRTY
        assert len(second.queue) == 1

    def test_retry_sync_drains(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.fail_with("network")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()
            remote.fail_with(None)
            return await store.retry_sync()

        report = asyncio.run(scenario())
        assert report.succeeded == 1
        assert len(store.queue) == 0

    def test_reset_all(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.QUEST, "debut", True)
            store.mutate(Domain.ITEM_QUANTITY, "salewa", 2)
            await store.wait_for_pending_writes()
            return await store.reset_all()

        assert asyncio.run(scenario()) is True
        assert store.records() == []
        assert store._local.load_all() == {}
        assert remote.rows == {}

    def test_reset_all_waits_for_write_in_flight(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            remote.gate = asyncio.Event()
            store.mutate(Domain.QUEST, "debut", True)
            await wait_until_sending(store, "quest:debut")

            reset = asyncio.ensure_future(store.reset_all())
            for _ in range(5):
                await asyncio.sleep(0)
            remote.gate.set()
            cleared = await reset
            await store.reconcile()
            return cleared

        assert asyncio.run(scenario()) is True
        assert remote.rows == {}
        assert store.records() == []
        assert len(store.queue) == 0

    def test_reset_all_waits_for_running_drain(self, make_device, remote):
        store = make_device(online=False)

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.ITEM_QUANTITY, "salewa", 4)
            remote.gate = asyncio.Event()
            store.monitor.set_online(True)
            await wait_until_sending(store, "item_quantity:salewa")
            assert store.queue.is_draining

            reset = asyncio.ensure_future(store.reset_all())
            for _ in range(5):
                await asyncio.sleep(0)
            remote.gate.set()
            cleared = await reset
            await store.wait_for_pending_writes()
            await store.reconcile()
            return cleared

        assert asyncio.run(scenario()) is True
        assert remote.rows == {}
        assert store.read(Domain.ITEM_QUANTITY, "salewa") is None

    def test_reset_all_offline_is_local_only(self, make_device, remote):
        store = make_device()

        async def scenario():
            await store.initialize("user-1")
            store.mutate(Domain.QUEST, "debut", True)
            await store.wait_for_pending_writes()
            store.monitor.set_online(False)
            return await store.reset_all()

        assert asyncio.run(scenario()) is False
        assert store.records() == []
        assert remote.value("user-1", "quest:debut") is True
