# =============================================================================
# tracker_core/__init__.py
# Progress Tracker Core
# =============================================================================
"""
Core package for the quest / hideout / item progress tracker.

The offline-first synchronization engine lives in ``tracker_core.offline``;
everything else in this package (errors, logging, configuration, the
Supabase client, presentation hooks) supports it.
"""

__version__ = "0.4.0"
