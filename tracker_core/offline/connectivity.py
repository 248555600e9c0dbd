# =============================================================================
# tracker_core/offline/connectivity.py
# Online/Offline and Signed-In User Monitoring
# =============================================================================
"""
ConnectivityMonitor - watches the two signals that drive reconciliation.

Signals:
- network state (pushed by the host via ``set_online`` or probed by a
  background thread that opens a socket to the Supabase host)
- authenticated user id (pushed by an AuthProvider via ``set_user``)

Events (emitted only on transitions, never debounced):
- connectivity restored / lost
- user changed (new id or None on sign-out)

Callbacks always run on the engine's event loop; signals coming from other
threads are marshalled with ``loop.call_soon_threadsafe``.
"""

from __future__ import annotations
import asyncio
import socket
import threading
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urlparse

from tracker_core.errors import safe_execute
from tracker_core.logging import get_logger

logger = get_logger(__name__)


class ConnectivityMonitor:
    """
    Tracks network reachability and the signed-in user.

    Usage:
        monitor = ConnectivityMonitor(supabase_url=settings.supabase_url)
        monitor.on_connectivity_restored(store_reconnected)
        monitor.set_online(False)
        monitor.set_user("8b1f...")
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for connection tests

    # Fallback hosts when no Supabase URL is configured
    PROBE_HOSTS = [
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("8.8.8.8", 53),        # Google DNS
    ]

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        initially_online: bool = True,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        check_interval_online: Optional[float] = None,
        check_interval_offline: Optional[float] = None,
        connection_timeout: Optional[float] = None,
    ):
        self.supabase_url = supabase_url
        self._online = initially_online
        self._user_id: Optional[str] = None
        self._loop = loop
        self.last_check: Optional[datetime] = None
        self.last_online: Optional[datetime] = datetime.now() if initially_online else None

        self.check_interval_online = check_interval_online or self.CHECK_INTERVAL_ONLINE
        self.check_interval_offline = check_interval_offline or self.CHECK_INTERVAL_OFFLINE
        self.connection_timeout = connection_timeout or self.CONNECTION_TIMEOUT

        self._restored_callbacks: List[Callable[[], None]] = []
        self._lost_callbacks: List[Callable[[], None]] = []
        self._user_callbacks: List[Callable[[Optional[str]], None]] = []

        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def online(self) -> bool:
        """Current network state."""
        return self._online

    @property
    def user_id(self) -> Optional[str]:
        """Currently authenticated user, None when signed out."""
        return self._user_id

    @property
    def authenticated(self) -> bool:
        return self._user_id is not None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the event loop callbacks must run on."""
        self._loop = loop

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def set_online(self, online: bool) -> None:
        """Report the network state; emits an event on transitions."""
        self._dispatch(self._apply_online, bool(online))

    def set_user(self, user_id: Optional[str], notify: bool = True) -> None:
        """Report the authenticated user (None on sign-out)."""
        self._dispatch(self._apply_user, user_id or None, notify)

    def _apply_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        if online:
            self.last_online = datetime.now()
            logger.info("Connection restored")
            self._notify(self._restored_callbacks)
        else:
            logger.info("Connection lost - switching to offline mode")
            self._notify(self._lost_callbacks)

    def _apply_user(self, user_id: Optional[str], notify: bool) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info(f"Authenticated user changed: {user_id or 'signed out'}")
        if notify:
            self._notify(self._user_callbacks, user_id)

    def _dispatch(self, func, *args) -> None:
        """Run ``func`` on the engine loop, hopping threads if needed."""
        loop = self._loop
        if loop is not None and loop.is_running() and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(func, *args)
                return
        func(*args)

    def attach_auth_provider(self, provider) -> None:
        """
        Follow an AuthProvider's identity.

        Seeds the current user without emitting, then forwards every
        login/logout event to ``set_user``.
        """
        self.set_user(provider.current_user_id(), notify=False)
        provider.on_auth_state_change(self.set_user)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def on_connectivity_restored(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback for offline -> online; returns an unsubscriber."""
        return self._register(self._restored_callbacks, callback)

    def on_connectivity_lost(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback for online -> offline; returns an unsubscriber."""
        return self._register(self._lost_callbacks, callback)

    def on_user_changed(self, callback: Callable[[Optional[str]], None]) -> Callable[[], None]:
        """Register a callback for login/logout; returns an unsubscriber."""
        return self._register(self._user_callbacks, callback)

    @staticmethod
    def _register(callbacks: list, callback) -> Callable[[], None]:
        if callback not in callbacks:
            callbacks.append(callback)

        def unregister() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unregister

    @staticmethod
    def _notify(callbacks: list, *args) -> None:
        for callback in list(callbacks):
            safe_execute(callback, *args, error_message="Error in connectivity callback")

    # =========================================================================
    # PROBING
    # =========================================================================

    def _probe_targets(self) -> List[tuple]:
        if self.supabase_url:
            parsed = urlparse(self.supabase_url)
            if parsed.hostname:
                port = parsed.port or (443 if parsed.scheme != "http" else 80)
                return [(parsed.hostname, port)]
        return list(self.PROBE_HOSTS)

    def _probe(self) -> bool:
        """Try to open a TCP connection to any probe target."""
        for host, port in self._probe_targets():
            try:
                with socket.create_connection((host, port), timeout=self.connection_timeout):
                    return True
            except OSError:
                continue
        return False

    def check_connection(self) -> bool:
        """
        Probe the network now and report the result.

        Returns:
            True if the remote host is reachable
        """
        ok = self._probe()
        self.last_check = datetime.now()
        self.set_online(ok)
        return ok

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectivityMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=self.connection_timeout + 1)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.is_set():
            interval = (
                self.check_interval_online
                if self._online
                else self.check_interval_offline
            )

            # Wait for interval or stop signal
            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "online": self._online,
            "authenticated": self.authenticated,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "last_online": self.last_online.isoformat() if self.last_online else None,
        }
