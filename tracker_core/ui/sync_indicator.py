# =============================================================================
# tracker_core/ui/sync_indicator.py
# Sync Status Badge for Streamlit
# =============================================================================
"""
Aggregate sync indicator.

The UI only ever sees a ``SyncStatusSnapshot``; individual write failures
are never surfaced.
"""

from typing import Dict, Tuple

import streamlit as st

from tracker_core.errors import error_boundary
from tracker_core.offline.models import SyncIndicatorState, SyncStatusSnapshot

# icon, label, status class
INDICATOR_STYLES: Dict[SyncIndicatorState, Tuple[str, str, str]] = {
    SyncIndicatorState.SYNCED: ("✓", "Synced", "status-good"),
    SyncIndicatorState.SYNCING: ("⟳", "Syncing", "status-info"),
    SyncIndicatorState.PENDING_RETRY: ("○", "Pending sync", "status-warning"),
    SyncIndicatorState.OFFLINE: ("⚠", "Offline", "status-warning"),
    SyncIndicatorState.LOCAL_ONLY: ("💾", "Saved on this device", "status-muted"),
}

STATUS_COLORS = {
    "status-good": "#22c55e",
    "status-info": "#3b82f6",
    "status-warning": "#f59e0b",
    "status-muted": "#94a3b8",
}


def indicator_label(snapshot: SyncStatusSnapshot) -> str:
    """Short human-readable status, e.g. "Pending sync (3)"."""
    _, label, _ = INDICATOR_STYLES[snapshot.indicator]
    if snapshot.indicator in (SyncIndicatorState.PENDING_RETRY, SyncIndicatorState.OFFLINE):
        if snapshot.queue_depth:
            label = f"{label} ({snapshot.queue_depth})"
    elif snapshot.indicator is SyncIndicatorState.SYNCED and not snapshot.authenticated:
        label = "Sign in to sync"
    return label


@error_boundary(error_message="Sync indicator failed")
def render_sync_indicator(snapshot: SyncStatusSnapshot) -> None:
    """
    Render the sync status badge.

    Args:
        snapshot: Result of ``ProgressStore.get_sync_status()``
    """
    icon, _, status_class = INDICATOR_STYLES[snapshot.indicator]
    color = STATUS_COLORS[status_class]

    st.markdown(f"""
    <div class="status-badge {status_class}" style="color: {color}; font-size: 0.85rem;">
        <span>{icon}</span>
        <span>{indicator_label(snapshot)}</span>
    </div>
    """, unsafe_allow_html=True)

    if snapshot.blocked:
        st.caption(f"{snapshot.blocked} change(s) were rejected by the server and are kept on this device.")
