# =============================================================================
# tracker_core/offline/context.py
# Explicit Engine Context and Event-Loop Host
# =============================================================================
"""
Everything the engine needs, built once at startup and passed around.

There are no module-level singletons: the host (Streamlit app, tests, a
CLI) calls ``build_context()`` and keeps the returned ``TrackerContext``.

Synchronous hosts run the engine through an ``EngineRunner``, which owns one
asyncio loop on a daemon thread; every engine call is submitted to that loop
so the store is only ever touched from a single thread.
"""

from __future__ import annotations
import asyncio
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from tracker_core.auth import SupabaseAuthProvider
from tracker_core.config import TrackerSettings, load_settings
from tracker_core.data import cleanup_supabase_client, create_supabase_client
from tracker_core.logging import get_logger
from tracker_core.offline.connectivity import ConnectivityMonitor
from tracker_core.offline.local_store import LocalStore
from tracker_core.offline.models import utc_now
from tracker_core.offline.progress_store import ProgressStore
from tracker_core.offline.remote_store import SupabaseRemoteStore

logger = get_logger(__name__)


class EngineRunner:
    """
    Hosts the engine's event loop on a background thread.

    Usage:
        runner = EngineRunner()
        runner.run(store.initialize(user_id))
        runner.call(store.mutate, Domain.QUEST, "debut", True)
        runner.stop()
    """

    def __init__(self, name: str = "TrackerEngine", timeout: Optional[float] = 30.0):
        self.timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name=name)
        self._thread.start()
        self._ready.wait()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._loop.is_closed()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def submit(self, coro) -> Future:
        """Schedule a coroutine on the engine loop without waiting."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def run(self, coro, timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the engine loop and wait for its result."""
        return self.submit(coro).result(timeout=timeout or self.timeout)

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run a plain (synchronous) engine method on the engine loop."""
        async def _invoke():
            return func(*args, **kwargs)

        return self.run(_invoke())

    def stop(self) -> None:
        if not self.running:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        logger.debug("Engine loop stopped")


@dataclass
class TrackerContext:
    """The wired-up engine for one device / profile."""
    settings: TrackerSettings
    local_store: LocalStore
    monitor: ConnectivityMonitor
    store: ProgressStore
    remote_store: Optional[Any] = None
    auth_provider: Optional[Any] = None
    client: Optional[Any] = field(default=None, repr=False)

    @property
    def remote_enabled(self) -> bool:
        return self.remote_store is not None

    def current_user_id(self) -> Optional[str]:
        if self.auth_provider is None:
            return None
        return self.auth_provider.current_user_id()

    async def shutdown(self) -> None:
        """Close the store (flushing in-flight writes), then the Supabase session."""
        await self.store.close()
        cleanup_supabase_client(self.client)
        logger.info("Tracker context shut down")


def build_context(
    settings: Optional[TrackerSettings] = None,
    *,
    clock: Callable[[], datetime] = utc_now,
    client: Any = None,
    remote_store: Any = None,
    auth_provider: Any = None,
    local_store: Optional[LocalStore] = None,
    monitor: Optional[ConnectivityMonitor] = None,
) -> TrackerContext:
    """
    Construct the engine graph.

    Anything not passed in is derived from ``settings``: the Supabase client
    and remote store only when credentials are configured, the auth provider
    from that client. Call ``await context.store.initialize(user_id)`` on the
    engine loop afterwards.
    """
    settings = settings or load_settings()

    if remote_store is None and settings.remote_enabled:
        client = client or create_supabase_client(settings)
        if client is not None:
            remote_store = SupabaseRemoteStore(client)

    if auth_provider is None and client is not None:
        auth_provider = SupabaseAuthProvider(client)

    local_store = local_store or LocalStore(settings.db_path)
    monitor = monitor or ConnectivityMonitor(
        supabase_url=settings.supabase_url,
        check_interval_online=settings.probe_interval_online,
        check_interval_offline=settings.probe_interval_offline,
        connection_timeout=settings.connection_timeout,
    )

    store = ProgressStore(local_store, remote_store, monitor, clock=clock)

    if auth_provider is not None:
        monitor.attach_auth_provider(auth_provider)

    logger.info(
        f"Tracker context built (remote: {'enabled' if remote_store else 'disabled'}, "
        f"db: {settings.db_path})"
    )
    return TrackerContext(
        settings=settings,
        local_store=local_store,
        monitor=monitor,
        store=store,
        remote_store=remote_store,
        auth_provider=auth_provider,
        client=client,
    )
