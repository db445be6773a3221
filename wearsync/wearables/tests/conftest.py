"""Shared fixtures, an in-memory health store, and an in-memory gateway."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import pytest

from wearsync.wearables.base import (
    CanonicalMetricRecord,
    HealthStore,
    MetricType,
    PersistenceError,
    RawHealthSample,
    SdkStatus,
    TimeRangeFilter,
    WearablesGateway,
)
from wearsync.wearables.config_loader import SyncConfig, load_sync_config
from wearsync.wearables.sync.dedup import SyncRunLocks

# Canonical test identities
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_INTEGRATION_ID = UUID("87654321-4321-8765-4321-876543218765")

UTC = timezone.utc
# Fixed "now" for orchestrator runs: midday so no sample straddles midnight.
NOW = datetime(2024, 6, 5, 12, 0, tzinfo=UTC)

HEALTH_CONNECT = "com.google.android.apps.healthdata"
GOOGLE_FIT = "com.google.android.apps.fitness"
SAMSUNG = "com.sec.android.app.shealth"
XIAOMI = "com.xiaomi.wearable"


def sample(
    metric_type: MetricType,
    start: datetime,
    origin: str = HEALTH_CONNECT,
    end: datetime | None = None,
    **payload: Any,
) -> RawHealthSample:
    """Build a RawHealthSample with a flat payload."""
    return RawHealthSample(
        metric_type=metric_type,
        start_time=start,
        end_time=end,
        origin_id=origin,
        payload=payload,
    )


class FakeHealthStore(HealthStore):
    """In-memory HealthStore.

    Records are returned when they overlap the requested window, the way the
    platform does; the reader applies its own start-time filter.
    """

    DISPLAY_NAME = "Fake Health Store"

    def __init__(
        self,
        samples: list[RawHealthSample] | None = None,
        status: SdkStatus = SdkStatus.AVAILABLE,
        initialized: bool = True,
    ) -> None:
        self.samples = list(samples or [])
        self.status = status
        self.initialized = initialized
        self.failures: dict[MetricType, Exception] = {}
        self.reads: list[tuple[MetricType, TimeRangeFilter]] = []

    def add(self, *samples: RawHealthSample) -> None:
        self.samples.extend(samples)

    async def initialize(self) -> bool:
        return self.initialized

    async def get_sdk_status(self) -> SdkStatus:
        return self.status

    async def read_records(
        self, metric_type: MetricType, time_range: TimeRangeFilter
    ) -> list[RawHealthSample]:
        self.reads.append((metric_type, time_range))
        if metric_type in self.failures:
            raise self.failures[metric_type]
        return [
            s
            for s in self.samples
            if s.metric_type is metric_type
            and s.start_time < time_range.end
            and (s.end_time or s.start_time) >= time_range.start
        ]


class InMemoryGateway(WearablesGateway):
    """Gateway storing rows by conflict key, with injectable batch failures."""

    def __init__(self, fail_batches: set[int] | None = None) -> None:
        self.rows: dict[tuple, CanonicalMetricRecord] = {}
        self.batches: list[list[CanonicalMetricRecord]] = []
        self.fail_batches = fail_batches or set()

    async def upsert(self, records: list[CanonicalMetricRecord]) -> int:
        index = len(self.batches)
        self.batches.append(list(records))
        if index in self.fail_batches:
            raise PersistenceError(f"batch {index} rejected")
        for record in records:
            self.rows[record.conflict_key] = record
        return len(records)

    def of_type(self, metric_type: str) -> list[CanonicalMetricRecord]:
        return sorted(
            (r for r in self.rows.values() if r.metric_type == metric_type),
            key=lambda r: r.recorded_at,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def small_batch_config(sync_config: SyncConfig) -> SyncConfig:
    """Sync config with a batch size of 2."""
    return dataclasses.replace(
        sync_config, sync=dataclasses.replace(sync_config.sync, batch_size=2)
    )


@pytest.fixture
def store() -> FakeHealthStore:
    return FakeHealthStore()


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def locks() -> SyncRunLocks:
    return SyncRunLocks()
