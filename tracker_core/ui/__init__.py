# =============================================================================
# tracker_core/ui/__init__.py
# Streamlit Presentation Helpers
# =============================================================================

from .sync_indicator import indicator_label, render_sync_indicator

__all__ = ["indicator_label", "render_sync_indicator"]
