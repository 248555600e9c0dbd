# =============================================================================
# tracker_core/config/settings.py
# Settings for the Progress Tracker (Streamlit secrets + environment)
# =============================================================================
"""
Settings resolution.

Credentials come from ``.streamlit/secrets.toml`` when the app runs under
Streamlit::

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

and from the ``SUPABASE_URL`` / ``SUPABASE_KEY`` environment variables
otherwise. Missing credentials are not an error: the tracker then runs in
LocalStore-only mode.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from tracker_core.errors import ConfigurationError
from tracker_core.logging import get_logger

logger = get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "local_data" / "progress.db"


@dataclass
class TrackerSettings:
    """Resolved runtime settings."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)

    # Connectivity probing
    probe_interval_online: float = 30.0     # Seconds between checks when online
    probe_interval_offline: float = 10.0    # Seconds between checks when offline
    connection_timeout: float = 5.0         # Timeout for connection tests

    log_level: str = "INFO"

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        if bool(self.supabase_url) != bool(self.supabase_key):
            missing = "key" if self.supabase_url else "url"
            raise ConfigurationError(
                f"Supabase {missing} is missing; configure both url and key or neither",
                config_key=f"supabase.{missing}",
            )

    @property
    def remote_enabled(self) -> bool:
        """True when cloud sync credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)


def _streamlit_secrets() -> Optional[Mapping[str, Any]]:
    """Return the [supabase] secrets section, or None outside Streamlit."""
    try:
        import streamlit as st

        if "supabase" in st.secrets:
            return st.secrets["supabase"]
    except Exception as e:
        # No secrets.toml (or not running under Streamlit)
        logger.debug(f"Streamlit secrets not available: {e}")
    return None


def load_settings(
    secrets: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> TrackerSettings:
    """
    Resolve settings from Streamlit secrets and environment variables.

    Args:
        secrets: Explicit ``[supabase]`` section (defaults to st.secrets)
        env: Environment mapping (defaults to os.environ)

    Returns:
        TrackerSettings

    Raises:
        ConfigurationError: If only half of the Supabase credentials are set
    """
    env = os.environ if env is None else env
    section = secrets if secrets is not None else _streamlit_secrets()

    url = key = None
    if section:
        url = section.get("url")
        key = section.get("key")

    url = url or env.get("SUPABASE_URL") or None
    key = key or env.get("SUPABASE_KEY") or None

    kwargs: dict = {
        "supabase_url": url,
        "supabase_key": key,
        "log_level": env.get("TRACKER_LOG_LEVEL", "INFO"),
    }
    if env.get("TRACKER_DB_PATH"):
        kwargs["db_path"] = Path(env["TRACKER_DB_PATH"])

    settings = TrackerSettings(**kwargs)
    if not settings.remote_enabled:
        logger.warning(
            "Supabase credentials not configured. Running in LocalStore-only mode. "
            "Set SUPABASE_URL and SUPABASE_KEY to enable cloud sync."
        )
    return settings
