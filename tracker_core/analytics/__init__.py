# =============================================================================
# tracker_core/analytics/__init__.py
# Progress Analytics
# =============================================================================

from .progress_stats import (
    records_to_dataframe,
    summarize_progress,
    completed_entity_ids,
    recently_completed,
)

__all__ = [
    "records_to_dataframe",
    "summarize_progress",
    "completed_entity_ids",
    "recently_completed",
]
