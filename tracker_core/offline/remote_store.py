# =============================================================================
# tracker_core/offline/remote_store.py
# Supabase Adapter for Multi-Device Progress
# =============================================================================
"""
RemoteStore - ownership-scoped access to the per-domain Supabase tables.

Every call is async (the blocking supabase-py client runs in a worker thread
via ``asyncio.to_thread``) and every failure is caught here and normalized
into a ``RemoteResult``; nothing raises past this adapter.

Failure taxonomy:
- network / timeout             -> recoverable
- expired session (JWT)         -> recoverable, ``auth_expired=True``
- ownership / permission (RLS)  -> not recoverable
"""

from __future__ import annotations
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx
from postgrest.exceptions import APIError

from tracker_core.errors import (
    RemoteAuthExpiredError,
    RemotePermissionDeniedError,
    RemoteUnavailableError,
    TrackerError,
    handle_error,
)
from tracker_core.logging import get_logger
from tracker_core.offline.domains import DEFAULT_DOMAINS, DomainSpec
from tracker_core.offline.models import Domain, ProgressRecord, RemoteResult

logger = get_logger(__name__)


# PostgREST / Postgres codes
AUTH_EXPIRED_CODES = {"PGRST301", "PGRST302", "PGRST303", "401"}
PERMISSION_DENIED_CODES = {"42501", "PGRST300", "403"}


def classify_error(error: Exception, table: Optional[str] = None) -> TrackerError:
    """
    Map a client exception onto the tracker's remote error taxonomy.

    Args:
        error: Exception raised by the Supabase client
        table: Table being accessed (for log details)

    Returns:
        RemoteAuthExpiredError, RemotePermissionDeniedError or
        RemoteUnavailableError
    """
    if isinstance(error, TrackerError):
        return error

    if isinstance(error, APIError):
        code = str(error.code or "")
        message = str(error.message or error)
        lowered = message.lower()
        if code in AUTH_EXPIRED_CODES or "jwt expired" in lowered:
            return RemoteAuthExpiredError(message, details={"code": code, "table": table})
        if (
            code in PERMISSION_DENIED_CODES
            or "row-level security" in lowered
            or "permission denied" in lowered
        ):
            return RemotePermissionDeniedError(message, table=table, details={"code": code})
        return RemoteUnavailableError(message, table=table, details={"code": code})

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 401:
            return RemoteAuthExpiredError(str(error), details={"status": status})
        if status == 403:
            return RemotePermissionDeniedError(str(error), table=table, details={"status": status})
        return RemoteUnavailableError(str(error), table=table, details={"status": status})

    if isinstance(error, (httpx.TransportError, OSError, asyncio.TimeoutError)):
        return RemoteUnavailableError(f"Network error: {error}", table=table)

    return RemoteUnavailableError(f"Unexpected remote error: {error}", table=table)


class SupabaseRemoteStore:
    """
    Remote store backed by one Supabase table per domain.

    Usage:
        remote = SupabaseRemoteStore(create_supabase_client(settings))
        result = await remote.fetch_user_records(user_id, Domain.QUEST)
        if result:
            records = result.data
    """

    PAGE_SIZE = 1000    # Supabase row limit per request

    def __init__(
        self,
        client,
        domains: Optional[Mapping[Domain, DomainSpec]] = None,
        timeout: Optional[float] = 15.0,
    ):
        """
        Args:
            client: supabase-py Client
            domains: Domain table mapping (defaults to the built-in tables)
            timeout: Seconds before a single call counts as a network failure
        """
        self.client = client
        self.domains = dict(domains or DEFAULT_DOMAINS)
        self.timeout = timeout

    async def _run(self, func, *args):
        """Run a blocking client call off the event loop."""
        call = asyncio.to_thread(func, *args)
        if self.timeout:
            return await asyncio.wait_for(call, self.timeout)
        return await call

    # =========================================================================
    # READS
    # =========================================================================

    def _fetch_rows(self, user_id: str, spec: DomainSpec) -> List[Dict[str, Any]]:
        """Fetch ALL rows for a user (handles the 1000 row limit)."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            response = (
                self.client.table(spec.table_name)
                .select(spec.select_columns)
                .eq("user_id", user_id)
                .range(offset, offset + self.PAGE_SIZE - 1)
                .execute()
            )
            batch = response.data or []
            rows.extend(batch)
            # Fewer than a full page means we've reached the end
            if len(batch) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE
        return rows

    async def fetch_user_records(self, user_id: str, domain: Domain) -> RemoteResult:
        """
        Fetch one user's records for a domain.

        Returns:
            RemoteResult whose ``data`` is a list of ProgressRecord
        """
        spec = self.domains[domain]
        try:
            rows = await self._run(self._fetch_rows, user_id, spec)
        except Exception as e:
            error = classify_error(e, spec.table_name)
            handle_error(error, level="warning")
            return RemoteResult.from_exception(error)

        records = []
        for row in rows:
            # Rows are filtered server-side by RLS as well
            if row.get("user_id", user_id) != user_id:
                continue
            try:
                records.append(spec.from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed {spec.table_name} row: {e}")

        logger.debug(f"Fetched {len(records)} {domain.value} records from {spec.table_name}")
        return RemoteResult.ok(records)

    # =========================================================================
    # WRITES
    # =========================================================================

    def _upsert_rows(self, spec: DomainSpec, rows: List[Dict[str, Any]]) -> None:
        self.client.table(spec.table_name).upsert(rows, on_conflict=spec.on_conflict).execute()

    async def upsert_records(self, user_id: str, records: Sequence[ProgressRecord]) -> RemoteResult:
        """
        Insert-or-update records for ``user_id``.

        Idempotent: repeating a call with the same payload leaves the remote
        unchanged. Records are grouped into one upsert per domain table.

        Returns:
            RemoteResult (``data`` is the number of rows written)
        """
        if not user_id:
            return RemoteResult.fail(
                "Not authenticated", error_code="REMOTE_002", auth_expired=True
            )
        if not records:
            return RemoteResult.ok(0)

        grouped: Dict[Domain, List[ProgressRecord]] = defaultdict(list)
        for record in records:
            grouped[record.domain].append(record)

        written = 0
        for domain, batch in grouped.items():
            spec = self.domains[domain]
            try:
                rows = [spec.to_row(user_id, record) for record in batch]
                await self._run(self._upsert_rows, spec, rows)
            except Exception as e:
                error = classify_error(e, spec.table_name)
                handle_error(error, level="warning")
                return RemoteResult.from_exception(error)
            written += len(batch)

        logger.debug(f"Upserted {written} records for user {user_id}")
        return RemoteResult.ok(written)

    def _delete_rows(self, user_id: str, spec: DomainSpec) -> None:
        self.client.table(spec.table_name).delete().eq("user_id", user_id).execute()

    async def delete_user_records(self, user_id: str, domain: Domain) -> RemoteResult:
        """Delete every row a user owns in one domain table (reset progress)."""
        spec = self.domains[domain]
        try:
            await self._run(self._delete_rows, user_id, spec)
        except Exception as e:
            error = classify_error(e, spec.table_name)
            handle_error(error, level="warning")
            return RemoteResult.from_exception(error)
        logger.info(f"Cleared {spec.table_name} for user {user_id}")
        return RemoteResult.ok()
