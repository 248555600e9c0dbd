"""
Streamlit entry point for the progress tracker.

Builds the engine once per server process and shows the sync indicator,
a progress summary and the manual sync / reset controls. Quest, hideout
and item pages call ``get_engine()`` and use ``context.store`` directly.
"""

import atexit

import streamlit as st

from tracker_core.analytics import recently_completed, summarize_progress
from tracker_core.config import load_settings
from tracker_core.logging import setup_logging, get_logger
from tracker_core.offline import EngineRunner, build_context
from tracker_core.ui import render_sync_indicator

logger = get_logger(__name__)


@st.cache_resource
def get_engine():
    """Build the tracker context and its event loop (once per process)."""
    settings = load_settings()
    setup_logging(level=settings.log_level)

    context = build_context(settings)
    runner = EngineRunner()
    runner.run(context.store.initialize(context.monitor.user_id))
    if context.remote_enabled:
        context.monitor.start_monitoring()
    atexit.register(_shutdown, context, runner)
    return context, runner


def _shutdown(context, runner) -> None:
    try:
        runner.run(context.shutdown())
    finally:
        runner.stop()


def main() -> None:
    st.set_page_config(page_title="Progress Tracker", page_icon="🗺️", layout="wide")
    context, runner = get_engine()
    store = context.store

    header, status = st.columns([4, 1])
    with header:
        st.title("Progress Tracker")
    with status:
        render_sync_indicator(runner.call(store.get_sync_status))

    records = runner.call(store.records)
    summary = summarize_progress(records)
    st.subheader("Overview")
    st.dataframe(summary, use_container_width=True)

    recent = recently_completed(records)
    if recent:
        st.subheader("Recently completed")
        for record in recent:
            st.write(f"• {record.entity_id} ({record.domain.value})")

    retry_col, reset_col = st.columns(2)
    with retry_col:
        if st.button("Retry sync", disabled=not context.remote_enabled):
            report = runner.run(store.retry_sync())
            st.toast(f"Synced {report.succeeded} change(s), {report.failed} still pending")
    with reset_col:
        if st.button("Reset progress", type="secondary"):
            cleared = runner.run(store.reset_all())
            if not cleared:
                st.warning("Local progress cleared; the cloud copy could not be cleared right now.")
            st.rerun()


if __name__ == "__main__":
    main()
