"""Persistence gateway: idempotent batch upserts into wearables_data.

Each batch is one ``INSERT ... ON CONFLICT DO UPDATE`` executed for every
row inside a single transaction, so a remote error fails the whole batch.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import asyncpg

from wearsync.services.supabase import get_connection
from wearsync.wearables.base import (
    CanonicalMetricRecord,
    PersistenceError,
    WearablesGateway,
)
from wearsync.wearables.sync.dedup import CONFLICT_COLUMNS, build_upsert_query

logger = logging.getLogger("wearsync.wearables.sync.persistence")

WEARABLES_TABLE = "wearables_data"
COLUMNS = [
    "user_id",
    "integration_id",
    "metric_type",
    "metric_value",
    "recorded_at",
    "sync_date",
]

UPSERT_SQL = build_upsert_query(
    WEARABLES_TABLE,
    COLUMNS,
    CONFLICT_COLUMNS,
    casts={"metric_value": "jsonb"},
)


def _row_args(record: CanonicalMetricRecord) -> tuple[Any, ...]:
    row = record.to_row()
    row["metric_value"] = json.dumps(row["metric_value"], sort_keys=True, default=str)
    return tuple(row[col] for col in COLUMNS)


class PostgresWearablesGateway(WearablesGateway):
    """Write CanonicalMetricRecords through the asyncpg pool.

    Args:
        connection_factory: Async context manager factory yielding a
            connection inside a transaction.  Defaults to
            ``services.supabase.get_connection`` (RLS-scoped per user).
    """

    def __init__(
        self,
        connection_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._connection_factory = connection_factory or get_connection

    async def upsert(self, records: list[CanonicalMetricRecord]) -> int:
        if not records:
            return 0
        user_ids = {r.user_id for r in records}
        scope = next(iter(user_ids)) if len(user_ids) == 1 else None
        args = [_row_args(r) for r in records]
        try:
            async with self._connection_factory(user_id=scope) as conn:
                await conn.executemany(UPSERT_SQL, args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise PersistenceError(
                f"Upsert of {len(records)} records into {WEARABLES_TABLE} failed: {exc}"
            ) from exc
        logger.debug("Upserted %d records", len(records), extra={"batch_size": len(records)})
        return len(records)
