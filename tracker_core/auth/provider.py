# =============================================================================
# tracker_core/auth/provider.py
# Authenticated-User Sources
# =============================================================================
"""
Auth providers feed the signed-in user id into the ConnectivityMonitor.

The engine never talks to an auth backend itself; it only needs the current
user id and a notification whenever it changes.
"""

from __future__ import annotations
from typing import Callable, List, Optional, Protocol

from tracker_core.errors import safe_execute
from tracker_core.logging import get_logger

logger = get_logger(__name__)

UserCallback = Callable[[Optional[str]], None]


class AuthProvider(Protocol):
    def current_user_id(self) -> Optional[str]:
        ...

    def on_auth_state_change(self, callback: UserCallback) -> None:
        ...


class StaticAuthProvider:
    """
    Provider whose user is set by the host (tests, anonymous sessions).

    Usage:
        auth = StaticAuthProvider()
        monitor.attach_auth_provider(auth)
        auth.sign_in("user-1")
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._callbacks: List[UserCallback] = []

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def on_auth_state_change(self, callback: UserCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def sign_in(self, user_id: str) -> None:
        self._set(user_id)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, user_id: Optional[str]) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        for callback in list(self._callbacks):
            safe_execute(callback, user_id, error_message="Error in auth callback")


class SupabaseAuthProvider:
    """Follows the session of a supabase-py client."""

    def __init__(self, client):
        self.client = client

    def current_user_id(self) -> Optional[str]:
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            # No session stored (or the token could not be refreshed)
            logger.debug(f"No authenticated Supabase user: {e}")
            return None
        user = getattr(response, "user", None)
        return getattr(user, "id", None)

    def on_auth_state_change(self, callback: UserCallback) -> None:
        def _forward(event, session) -> None:
            user = getattr(session, "user", None) if session is not None else None
            user_id = getattr(user, "id", None)
            logger.debug(f"Supabase auth event {event}: {user_id or 'signed out'}")
            callback(user_id)

        self.client.auth.on_auth_state_change(_forward)
