# =============================================================================
# tracker_core/offline/conflict_resolver.py
# Last-Write-Wins Merge of Local and Remote Snapshots
# =============================================================================
"""
Pairwise last-write-wins merge.

Rules, per record id:

- only in remote  -> remote (arrived from another device)
- only in local   -> local (not synced yet)
- in both         -> strictly greater ``updated_at`` wins; ties go to remote

Three or more devices converge only through the remote store acting as hub;
this is not an N-way CRDT.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Set

from tracker_core.offline.models import ProgressRecord


def resolve(
    local: Optional[ProgressRecord],
    remote: Optional[ProgressRecord],
) -> Optional[ProgressRecord]:
    """Pick the winner for a single record id."""
    if remote is None:
        return local
    if local is None:
        return remote
    if local.updated_at > remote.updated_at:
        return local
    return remote


def merge(
    local: Mapping[str, ProgressRecord],
    remote: Mapping[str, ProgressRecord],
) -> Dict[str, ProgressRecord]:
    """
    Merge two snapshots keyed by record id.

    Pure: neither input is modified. ``merge(merge(l, r), r) == merge(l, r)``.
    """
    merged = dict(local)
    for record_id, remote_record in remote.items():
        merged[record_id] = resolve(local.get(record_id), remote_record)
    return merged


@dataclass
class MergeOutcome:
    """Merged snapshot plus which side won each contested id."""
    merged: Dict[str, ProgressRecord] = field(default_factory=dict)
    from_remote: Set[str] = field(default_factory=set)
    local_wins: Set[str] = field(default_factory=set)


def diff_merge(
    local: Mapping[str, ProgressRecord],
    remote: Mapping[str, ProgressRecord],
) -> MergeOutcome:
    """
    Merge and report the direction of every difference.

    ``from_remote`` holds ids whose remote copy replaced (or added to) the
    local one. ``local_wins`` holds ids the remote is missing or has an
    older copy of; those still need pushing.
    """
    outcome = MergeOutcome(merged=merge(local, remote))

    for record_id, winner in outcome.merged.items():
        local_record = local.get(record_id)
        remote_record = remote.get(record_id)
        if remote_record is not None and winner is remote_record:
            if local_record != remote_record:
                outcome.from_remote.add(record_id)
        elif remote_record is None or winner.updated_at > remote_record.updated_at:
            outcome.local_wins.add(record_id)

    return outcome
