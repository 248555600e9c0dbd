# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

from tracker_core.offline.connectivity import ConnectivityMonitor
from tracker_core.offline.domains import DEFAULT_DOMAINS
from tracker_core.offline.local_store import LocalStore
from tracker_core.offline.models import Domain, ProgressRecord, RemoteResult
from tracker_core.offline.progress_store import ProgressStore


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Deterministic engine clock; time only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeRemoteStore:
    """
    In-memory stand-in for the Supabase tables.

    One instance can be shared between several simulated devices. Failures
    are injected with ``fail_with`` (every call) or ``fail_next`` (N calls).
    """

    def __init__(self):
        self.rows: Dict[Tuple[str, str], ProgressRecord] = {}
        self.upserts: List[Tuple[str, ProgressRecord]] = []
        self.fetches = 0
        self._failure: Optional[RemoteResult] = None
        self._queued_failures: List[RemoteResult] = []
        self.gate: Optional[asyncio.Event] = None

    # failure injection -------------------------------------------------------

    def fail_with(self, kind: Optional[str]) -> None:
        """kind: "network", "auth", "permission" or None to heal."""
        self._failure = self._result_for(kind) if kind else None

    def fail_next(self, count: int, kind: str = "network") -> None:
        self._queued_failures.extend(self._result_for(kind) for _ in range(count))

    @staticmethod
    def _result_for(kind: str) -> RemoteResult:
        if kind == "auth":
            return RemoteResult.fail("JWT expired", error_code="REMOTE_002", auth_expired=True)
        if kind == "permission":
            return RemoteResult.fail(
                "new row violates row-level security policy",
                error_code="REMOTE_003",
                recoverable=False,
            )
        return RemoteResult.fail("Network error: connection refused", error_code="REMOTE_001")

    def _next_failure(self) -> Optional[RemoteResult]:
        if self._queued_failures:
            return self._queued_failures.pop(0)
        return self._failure

    # remote store API --------------------------------------------------------

    async def fetch_user_records(self, user_id: str, domain: Domain) -> RemoteResult:
        await asyncio.sleep(0)
        self.fetches += 1
        failure = self._next_failure()
        if failure is not None:
            return failure
        return RemoteResult.ok([
            record for (owner, _), record in sorted(self.rows.items())
            if owner == user_id and record.domain == domain
        ])

    async def upsert_records(self, user_id: str, records) -> RemoteResult:
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if not user_id:
            return RemoteResult.fail("Not authenticated", error_code="REMOTE_002", auth_expired=True)
        failure = self._next_failure()
        if failure is not None:
            return failure
        for record in records:
            self.rows[(user_id, record.record_id)] = record
            self.upserts.append((user_id, record))
        return RemoteResult.ok(len(records))

    async def delete_user_records(self, user_id: str, domain: Domain) -> RemoteResult:
        await asyncio.sleep(0)
        failure = self._next_failure()
        if failure is not None:
            return failure
        for key in [k for k, r in self.rows.items() if k[0] == user_id and r.domain == domain]:
            del self.rows[key]
        return RemoteResult.ok()

    # helpers -----------------------------------------------------------------

    def value(self, user_id: str, record_id: str):
        record = self.rows.get((user_id, record_id))
        return record.value if record is not None else None

    def seed(self, user_id: str, record: ProgressRecord) -> None:
        self.rows[(user_id, record.record_id)] = record


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def local_store(tmp_path):
    store = LocalStore(tmp_path / "progress.db")
    yield store
    store.close()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
def make_device(tmp_path, clock, remote):
    """
    Factory for simulated devices sharing one remote and one clock.

    Usage (inside a running loop):
        device = make_device("phone")
        await device.initialize("user-1")
    """
    created = []

    def factory(name: str = "device", online: bool = True, with_remote: bool = True) -> ProgressStore:
        store = ProgressStore(
            LocalStore(tmp_path / f"{name}.db"),
            remote if with_remote else None,
            ConnectivityMonitor(initially_online=online),
            domains=DEFAULT_DOMAINS,
            clock=clock,
        )
        created.append(store)
        return store

    yield factory

    for store in created:
        store._local.close()


@pytest.fixture
def record_factory(clock):
    """Build records stamped with the fake clock."""
    def factory(domain: Domain, entity_id: str, value, offset: float = 0.0) -> ProgressRecord:
        stamp = clock() + timedelta(seconds=offset)
        completed = stamp if value is True else None
        return ProgressRecord.create(domain, entity_id, value, stamp, completed)
    return factory


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit():
    """Mock Streamlit for testing"""
    import sys

    # Create mock streamlit module
    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.secrets = {}
    mock_st.cache_data = lambda f: f
    mock_st.cache_resource = lambda f: f

    # Store original and replace
    original_st = sys.modules.get('streamlit')
    sys.modules['streamlit'] = mock_st

    yield mock_st

    # Restore original
    if original_st:
        sys.modules['streamlit'] = original_st
    else:
        del sys.modules['streamlit']


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    query = mock_client.table.return_value.select.return_value.eq.return_value
    query.range.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value = MagicMock()
    mock_client.table.return_value.delete.return_value.eq.return_value.execute.return_value = MagicMock()
    return mock_client
