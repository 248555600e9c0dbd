# =============================================================================
# tracker_core/data/supabase_client.py
# Supabase Client Configuration for the Progress Tracker
# =============================================================================

from __future__ import annotations
from typing import Optional

from tracker_core.config import TrackerSettings
from tracker_core.logging import get_logger

logger = get_logger(__name__)


def create_supabase_client(settings: TrackerSettings):
    """
    Create a Supabase client from resolved settings.

    Supports graceful degradation: when credentials are missing the tracker
    runs LocalStore-only, so this returns None instead of raising.

    Args:
        settings: Resolved TrackerSettings

    Returns:
        Supabase client instance or None if not configured
    """
    if not settings.remote_enabled:
        return None

    try:
        from supabase import create_client, Client
    except ImportError:
        logger.error("Supabase not installed. Run: `pip install supabase`")
        return None

    try:
        client: Client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("Supabase client initialized")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None


def cleanup_supabase_client(client) -> None:
    """
    Close the HTTP session underneath a Supabase client.
    Call this when the tracker shuts down.
    """
    if client is None:
        return
    try:
        # The Supabase client uses httpx internally
        postgrest = getattr(client, "postgrest", None)
        session = getattr(postgrest, "session", None)
        if session is not None and hasattr(session, "close"):
            session.close()
    except Exception as e:
        logger.debug(f"Ignoring Supabase cleanup error: {e}")
