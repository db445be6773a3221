"""Deduplication and run exclusivity for wearables_data syncs.

Dedup key:
    wearables_data: (user_id, integration_id, metric_type, recorded_at) — UNIQUE constraint

The database constraint is the authoritative dedup mechanism; the helpers
here keep a single batch from touching the same key twice (Postgres rejects
that inside one ``ON CONFLICT DO UPDATE`` statement) and stop two runs for
the same user + integration from overlapping.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable
from uuid import UUID

from wearsync.wearables.base import CanonicalMetricRecord, SyncInProgressError

logger = logging.getLogger("wearsync.wearables.sync.dedup")

CONFLICT_COLUMNS = ["user_id", "integration_id", "metric_type", "recorded_at"]


def run_key(user_id: UUID, integration_id: UUID) -> str:
    """Lock/debounce key for one user + integration."""
    return f"{user_id}:{integration_id}"


def dedupe_records(
    records: Iterable[CanonicalMetricRecord],
) -> list[CanonicalMetricRecord]:
    """Collapse records sharing a conflict key, last writer wins.

    The position of the first occurrence is kept so batch order stays stable.
    """
    by_key: dict[tuple, CanonicalMetricRecord] = {}
    for record in records:
        by_key[record.conflict_key] = record
    return list(by_key.values())


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    casts: dict[str, str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes, safe to call multiple times with the same
    data.  On conflict, updates the non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        casts:            Optional column -> SQL type cast for placeholders.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]
    casts = casts or {}

    placeholders = ", ".join(
        f"${i + 1}::{casts[col]}" if col in casts else f"${i + 1}"
        for i, col in enumerate(columns)
    )
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


class SyncRunLocks:
    """In-process run exclusivity and debounce per user + integration.

    Usage::

        locks = SyncRunLocks()
        async with locks.hold(user_id, integration_id):
            ...  # run the sync

    A second ``hold()`` for the same key while the first is active raises
    SyncInProgressError instead of waiting; the external scheduler retries
    on its own cadence.
    """

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._last_completed: dict[str, float] = {}

    def is_running(self, user_id: UUID, integration_id: UUID) -> bool:
        return run_key(user_id, integration_id) in self._active

    def seconds_since_last_run(self, user_id: UUID, integration_id: UUID) -> float | None:
        finished = self._last_completed.get(run_key(user_id, integration_id))
        if finished is None:
            return None
        return time.monotonic() - finished

    def mark_completed(self, user_id: UUID, integration_id: UUID) -> None:
        self._last_completed[run_key(user_id, integration_id)] = time.monotonic()

    @asynccontextmanager
    async def hold(self, user_id: UUID, integration_id: UUID) -> AsyncIterator[None]:
        key = run_key(user_id, integration_id)
        # no await between check and add
        if key in self._active:
            raise SyncInProgressError(f"Sync already running for {key}")
        self._active.add(key)
        logger.debug("Acquired sync lock for %s", key)
        try:
            yield
        finally:
            self._active.discard(key)
            logger.debug("Released sync lock for %s", key)

    def clear(self) -> None:
        """Reset all state."""
        self._active.clear()
        self._last_completed.clear()


_run_locks: SyncRunLocks | None = None


def get_run_locks() -> SyncRunLocks:
    """Process-wide lock registry used when a caller does not pass one."""
    global _run_locks
    if _run_locks is None:
        _run_locks = SyncRunLocks()
    return _run_locks
