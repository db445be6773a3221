"""Sync trigger and read-back endpoints for wearables_data."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict
from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from wearsync.dependencies import AppSettings, Gateway, ServiceKey, Store
from wearsync.models.wearables import SyncReportRead, SyncRequest, WearableMetricRead
from wearsync.services.supabase import fetch
from wearsync.wearables.base import SyncInitializationError, SyncInProgressError
from wearsync.wearables.sync.orchestrator import SyncReport, sync_to_wearables_data
from wearsync.wearables.sync.persistence import WEARABLES_TABLE

router = APIRouter(prefix="/wearables", tags=["wearables"], dependencies=[ServiceKey])
logger = logging.getLogger("wearsync.routers.wearables")


def _report_body(report: SyncReport) -> dict[str, Any]:
    body = asdict(report)
    body["state"] = report.state.value
    body["partial_failure_count"] = report.partial_failure_count
    return body


# ---------- Sync ----------

@router.post("/sync", response_model=SyncReportRead)
async def trigger_sync(
    body: SyncRequest, settings: AppSettings, store: Store, gateway: Gateway
) -> Any:
    try:
        report = await sync_to_wearables_data(
            body.user_id,
            body.integration_id,
            body.days_to_sync,
            store=store,
            gateway=gateway,
            tz=settings.tz,
            force=body.force,
        )
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except SyncInitializationError as exc:
        logger.warning("Sync for %s not started: %s", body.user_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _report_body(report)


# ---------- Stored rows ----------

@router.get("/data", response_model=list[WearableMetricRead])
async def list_data(
    user_id: uuid.UUID,
    integration_id: uuid.UUID | None = Query(default=None),
    metric_type: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=500, ge=1, le=5000),
) -> Any:
    conditions = ["user_id = $1"]
    params: list[Any] = [user_id]
    idx = 2

    if integration_id:
        conditions.append(f"integration_id = ${idx}")
        params.append(integration_id)
        idx += 1
    if metric_type:
        conditions.append(f"metric_type = ${idx}")
        params.append(metric_type)
        idx += 1
    if start_date:
        conditions.append(f"sync_date >= ${idx}")
        params.append(start_date)
        idx += 1
    if end_date:
        conditions.append(f"sync_date <= ${idx}")
        params.append(end_date)
        idx += 1

    params.append(limit)
    rows = await fetch(
        f"SELECT user_id, integration_id, metric_type, metric_value, recorded_at, sync_date "
        f"FROM {WEARABLES_TABLE} WHERE {' AND '.join(conditions)} "
        f"ORDER BY recorded_at DESC LIMIT ${idx}",
        *params,
        user_id=user_id,
    )
    return [_row_body(r) for r in rows]


def _row_body(row: Any) -> dict[str, Any]:
    body = dict(row)
    # asyncpg returns jsonb as text unless a codec is registered
    if isinstance(body.get("metric_value"), str):
        body["metric_value"] = json.loads(body["metric_value"])
    return body
