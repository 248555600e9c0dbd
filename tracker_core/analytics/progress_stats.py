# =============================================================================
# tracker_core/analytics/progress_stats.py
# Completion Summaries over the Cached Progress Records
# =============================================================================

from __future__ import annotations
import pandas as pd
from typing import Iterable, List, Optional, Set

from tracker_core.offline.models import Domain, ProgressRecord

COLUMNS = ["record_id", "domain", "entity_id", "value", "updated_at", "completed_at"]


def records_to_dataframe(records: Iterable[ProgressRecord]) -> pd.DataFrame:
    """
    Flatten progress records into a DataFrame.

    Returns:
    --------
    DataFrame with one row per record, ``domain`` as its string value and
    timezone-aware ``updated_at`` / ``completed_at`` columns.
    """
    rows = [record.to_dict() for record in records]
    df = pd.DataFrame(rows, columns=COLUMNS)
    if df.empty:
        return df
    df["updated_at"] = pd.to_datetime(df["updated_at"], utc=True)
    df["completed_at"] = pd.to_datetime(df["completed_at"], utc=True)
    return df


def summarize_progress(
    records: Iterable[ProgressRecord],
    totals: Optional[dict] = None,
) -> pd.DataFrame:
    """
    Per-domain progress summary.

    Parameters:
    -----------
    records : Iterable[ProgressRecord]
        Cached records (e.g. ``store.records()``)
    totals : dict, optional
        Known entity count per domain value ({"quest": 120, ...}); without
        it the percentage is relative to tracked records only

    Returns:
    --------
    DataFrame indexed by domain with columns:
        - tracked: records present
        - completed: records whose value is True (boolean domains)
        - total_quantity: summed quantities (item domain)
        - percent_complete: completed / total * 100
    """
    df = records_to_dataframe(records)
    domains = [domain.value for domain in Domain]
    summary = pd.DataFrame(index=pd.Index(domains, name="domain"))

    if df.empty:
        summary["tracked"] = 0
        summary["completed"] = 0
        summary["total_quantity"] = 0
    else:
        is_flag = df["value"].map(lambda v: isinstance(v, bool))
        flags = df[is_flag]
        quantities = df[~is_flag]

        summary["tracked"] = df.groupby("domain")["record_id"].count()
        summary["completed"] = flags[flags["value"] == True].groupby("domain")["record_id"].count()  # noqa: E712
        summary["total_quantity"] = quantities.groupby("domain")["value"].sum()
        summary = summary.fillna(0).astype(int)

    denominators = pd.Series(totals or {}, dtype="float64").reindex(summary.index)
    denominators = denominators.fillna(summary["tracked"].astype("float64"))
    summary["percent_complete"] = (
        (summary["completed"] / denominators.where(denominators > 0)) * 100
    ).fillna(0.0).round(1)
    return summary


def completed_entity_ids(records: Iterable[ProgressRecord], domain: Domain) -> Set[str]:
    """Entity ids completed in a boolean domain."""
    return {
        record.entity_id
        for record in records
        if record.domain == domain and record.value is True
    }


def recently_completed(records: Iterable[ProgressRecord], limit: int = 5) -> List[ProgressRecord]:
    """Most recently completed quests / station levels, newest first."""
    done = [record for record in records if record.completed_at is not None]
    done.sort(key=lambda record: record.completed_at, reverse=True)
    return done[:limit]
