"""wearsync health sync engine.

Reads raw samples from the on-device health store, normalizes units,
buckets them into canonical metrics, and upserts the result into the
wearables_data table.

Subpackages:
    adapters/ — Health store adapters (Health Connect bridge)
    sync/     — Orchestrator, deduplication, persistence gateway

Core modules:
    base          — Canonical data models, errors, collaborator ABCs
    config_loader — Load/validate/hot-reload sync_config.yaml
    prioritizer   — Source precedence ordering
    extractor     — Field extraction and unit normalization
    reader        — Record reader over one metric + window
    aggregator    — Hourly / daily / most-recent / session bucketing
"""

from wearsync.wearables.base import (
    CanonicalMetricRecord,
    HealthStore,
    MetricType,
    RawHealthSample,
    SdkStatus,
    TimeRangeFilter,
    WearablesGateway,
)
from wearsync.wearables.config_loader import SyncConfig, get_sync_config

__all__ = [
    "CanonicalMetricRecord",
    "HealthStore",
    "MetricType",
    "RawHealthSample",
    "SdkStatus",
    "TimeRangeFilter",
    "WearablesGateway",
    "SyncConfig",
    "get_sync_config",
]
