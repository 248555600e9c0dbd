# =============================================================================
# tracker_core/config/__init__.py
# Runtime Configuration
# =============================================================================

from .settings import TrackerSettings, load_settings, DEFAULT_DB_PATH

__all__ = ["TrackerSettings", "load_settings", "DEFAULT_DB_PATH"]
