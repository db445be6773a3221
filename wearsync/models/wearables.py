"""Pydantic models for the sync trigger and stored wearables_data rows."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import Field

from wearsync.models.base import WearsyncBase


# ---------- Sync ----------

class SyncRequest(WearsyncBase):
    user_id: uuid.UUID
    integration_id: uuid.UUID
    days_to_sync: int = Field(default=7, ge=1, le=90)
    force: bool = False


class SyncReportRead(WearsyncBase):
    user_id: uuid.UUID
    integration_id: uuid.UUID
    days_to_sync: int
    status: str
    state: str
    platform_status: str | None = None
    categories_succeeded: list[str] = Field(default_factory=list)
    categories_failed: dict[str, str] = Field(default_factory=dict)
    records_built: int = 0
    records_written: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    partial_failure_count: int = 0
    started_at: datetime
    finished_at: datetime | None = None


# ---------- Stored rows ----------

class WearableMetricRead(WearsyncBase):
    user_id: uuid.UUID
    integration_id: uuid.UUID
    metric_type: str
    metric_value: dict[str, Any]
    recorded_at: datetime
    sync_date: date
