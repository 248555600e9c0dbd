# =============================================================================
# tracker_core/offline/domains.py
# Per-Domain Table Mapping and Value Codecs
# =============================================================================
"""
One ``DomainSpec`` per progress category.

The engine itself is domain-agnostic; everything that differs between quest
progress, hideout builds and item quantities (remote table, key columns,
value type) is described here.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from tracker_core.errors import ProgressValidationError
from tracker_core.offline.models import (
    Domain,
    ProgressRecord,
    ProgressValue,
    format_timestamp,
    parse_timestamp,
)


def _single_key(column: str) -> Tuple[Callable[[str], Dict[str, Any]], Callable[[Dict[str, Any]], str]]:
    def serialize(entity_id: str) -> Dict[str, Any]:
        return {column: entity_id}

    def parse(row: Dict[str, Any]) -> str:
        return str(row[column])

    return serialize, parse


def _station_key(entity_id: str) -> Dict[str, Any]:
    # Module keys look like "<station_id>-<level>"
    station_id, sep, level = entity_id.rpartition("-")
    if not sep or not station_id:
        raise ProgressValidationError(
            "Station entity ids must look like '<station_id>-<level>'",
            domain=Domain.STATION.value,
            entity_id=entity_id,
        )
    try:
        return {"station_id": station_id, "level": int(level)}
    except ValueError:
        raise ProgressValidationError(
            "Station level must be an integer",
            domain=Domain.STATION.value,
            entity_id=entity_id,
        ) from None


def _parse_station_key(row: Dict[str, Any]) -> str:
    return f"{row['station_id']}-{int(row['level'])}"


@dataclass(frozen=True)
class DomainSpec:
    """How one domain maps onto its remote table."""
    domain: Domain
    table_name: str
    key_columns: Tuple[str, ...]
    value_column: str
    value_type: type
    serialize_key: Callable[[str], Dict[str, Any]]
    parse_key: Callable[[Dict[str, Any]], str]
    tracks_completion: bool = False     # Remote table has a completed_at column

    @property
    def on_conflict(self) -> str:
        """Unique key used for upserts."""
        return ",".join(("user_id",) + self.key_columns)

    @property
    def select_columns(self) -> str:
        columns = list(self.key_columns) + [self.value_column, "updated_at"]
        if self.tracks_completion:
            columns.append("completed_at")
        return ", ".join(columns)

    def coerce(self, value: Any, entity_id: Optional[str] = None) -> ProgressValue:
        """
        Validate a value for this domain.

        Raises:
            ProgressValidationError: boolean domain given a non-bool, or a
                quantity that is not a non-negative integer
        """
        if self.value_type is bool:
            if isinstance(value, bool):
                return value
        elif not isinstance(value, bool) and isinstance(value, int) and value >= 0:
            return int(value)

        raise ProgressValidationError(
            f"Invalid value for {self.domain.value}",
            domain=self.domain.value,
            entity_id=entity_id,
            value=value,
        )

    def completion_time(
        self,
        value: ProgressValue,
        now: datetime,
        previous: Optional[ProgressRecord] = None,
    ) -> Optional[datetime]:
        """completed_at for a new value (only boolean domains complete)."""
        if self.value_type is not bool or not value:
            return None
        if previous is not None and previous.value is True and previous.completed_at:
            return previous.completed_at
        return now

    def to_row(self, user_id: str, record: ProgressRecord) -> Dict[str, Any]:
        """Remote row for a record."""
        row = {"user_id": user_id}
        row.update(self.serialize_key(record.entity_id))
        row[self.value_column] = record.value
        row["updated_at"] = format_timestamp(record.updated_at)
        if self.tracks_completion:
            row["completed_at"] = format_timestamp(record.completed_at)
        return row

    def from_row(self, row: Dict[str, Any]) -> ProgressRecord:
        """Record for a remote row."""
        value = row.get(self.value_column)
        if self.value_type is bool:
            value = bool(value)
        else:
            value = int(value or 0)

        updated_at = parse_timestamp(row.get("updated_at"))
        completed_at = parse_timestamp(row.get("completed_at")) if self.tracks_completion else None
        if completed_at is None and value is True and self.tracks_completion:
            completed_at = updated_at

        return ProgressRecord.create(
            domain=self.domain,
            entity_id=self.parse_key(row),
            value=value,
            updated_at=updated_at,
            completed_at=completed_at,
        )


_quest_serialize, _quest_parse = _single_key("quest_id")
_item_serialize, _item_parse = _single_key("item_id")

QUEST_PROGRESS = DomainSpec(
    domain=Domain.QUEST,
    table_name="quest_progress",
    key_columns=("quest_id",),
    value_column="completed",
    value_type=bool,
    serialize_key=_quest_serialize,
    parse_key=_quest_parse,
    tracks_completion=True,
)

HIDEOUT_PROGRESS = DomainSpec(
    domain=Domain.STATION,
    table_name="hideout_progress",
    key_columns=("station_id", "level"),
    value_column="completed",
    value_type=bool,
    serialize_key=_station_key,
    parse_key=_parse_station_key,
)

ITEM_COLLECTION = DomainSpec(
    domain=Domain.ITEM_QUANTITY,
    table_name="item_collection",
    key_columns=("item_id",),
    value_column="collected_quantity",
    value_type=int,
    serialize_key=_item_serialize,
    parse_key=_item_parse,
)

DEFAULT_DOMAINS: Dict[Domain, DomainSpec] = {
    Domain.QUEST: QUEST_PROGRESS,
    Domain.STATION: HIDEOUT_PROGRESS,
    Domain.ITEM_QUANTITY: ITEM_COLLECTION,
}
