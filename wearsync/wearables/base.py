"""Base classes and canonical data models for the wearsync health sync engine.

Raw platform samples enter as ``RawHealthSample``; the extractor turns them
into one of the typed readings below, and the aggregator emits
``CanonicalMetricRecord`` rows.  These types are the single source of truth
consumed by the reader, aggregator, orchestrator, and persistence gateway.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union
from uuid import UUID

logger = logging.getLogger("wearsync.wearables")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InvalidRangeError(ValueError):
    """Raised when a TimeRangeFilter is unbounded or has start >= end."""


class HealthStoreError(Exception):
    """Platform-specific failure while reading from the health store."""


class SyncInitializationError(Exception):
    """The health platform could not be initialized for a sync run."""


class SyncInProgressError(Exception):
    """Another sync run already holds the lock for this user + integration."""


class PersistenceError(Exception):
    """A batch upsert into the remote store failed as a whole."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MetricType(str, Enum):
    """Record types read from the platform health store."""

    HEART_RATE = "HeartRate"
    STEPS = "Steps"
    DISTANCE = "Distance"
    ACTIVE_CALORIES = "ActiveCalories"
    EXERCISE_SESSION = "ExerciseSession"
    SLEEP_SESSION = "SleepSession"
    WEIGHT = "Weight"
    HEIGHT = "Height"
    BODY_FAT = "BodyFat"
    NUTRITION = "Nutrition"
    HYDRATION = "Hydration"
    BLOOD_PRESSURE = "BloodPressure"
    BLOOD_GLUCOSE = "BloodGlucose"
    OXYGEN_SATURATION = "OxygenSaturation"
    RESPIRATORY_RATE = "RespiratoryRate"
    BODY_TEMPERATURE = "BodyTemperature"
    BASAL_METABOLIC_RATE = "BasalMetabolicRate"
    RESTING_HEART_RATE = "RestingHeartRate"
    MENSTRUATION_FLOW = "MenstruationFlow"


class SdkStatus(str, Enum):
    """Availability of the platform health SDK on the device."""

    AVAILABLE = "available"
    NEEDS_UPDATE = "needs_update"
    UNAVAILABLE = "unavailable"


# Raw record type -> canonical wearables_data.metric_type label.
CANONICAL_METRIC_NAMES: dict[MetricType, str] = {
    MetricType.HEART_RATE: "heart_rate",
    MetricType.STEPS: "steps",
    MetricType.DISTANCE: "distance",
    MetricType.ACTIVE_CALORIES: "active_calories_burned",
    MetricType.EXERCISE_SESSION: "exercise_minutes",
    MetricType.SLEEP_SESSION: "sleep_hours",
    MetricType.WEIGHT: "weight",
    MetricType.HEIGHT: "height",
    MetricType.BODY_FAT: "body_fat",
    MetricType.NUTRITION: "nutrition_calories",
    MetricType.HYDRATION: "hydration",
    MetricType.BLOOD_PRESSURE: "blood_pressure",
    MetricType.BLOOD_GLUCOSE: "blood_glucose",
    MetricType.OXYGEN_SATURATION: "oxygen_saturation",
    MetricType.RESPIRATORY_RATE: "respiratory_rate",
    MetricType.BODY_TEMPERATURE: "body_temperature",
    MetricType.BASAL_METABOLIC_RATE: "basal_metabolic_rate",
    MetricType.RESTING_HEART_RATE: "resting_heart_rate",
    MetricType.MENSTRUATION_FLOW: "menstruation_flow",
}


def canonical_name(metric_type: MetricType) -> str:
    return CANONICAL_METRIC_NAMES[metric_type]


def parse_iso_datetime(value: object) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime) to a tz-aware datetime.

    Naive values are assumed to be UTC.  Returns None if the value is None
    or unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Could not parse datetime string: %r", value)
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Time window
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeRangeFilter:
    """Half-open time interval ``[start, end)``.

    Both bounds are always explicit.  Construction does not validate;
    ``validate()`` is called by the reader so a malformed window fails at the
    point of use with ``InvalidRangeError``.
    """

    start: datetime
    end: datetime

    def validate(self) -> None:
        if self.start is None or self.end is None:
            raise InvalidRangeError("Time range must have both start and end")
        if self.start >= self.end:
            raise InvalidRangeError(
                f"Time range start {self.start.isoformat()} is not before end "
                f"{self.end.isoformat()}"
            )

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


# ---------------------------------------------------------------------------
# Raw platform sample
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawHealthSample:
    """One platform-reported measurement or session, in its vendor shape.

    Attributes:
        metric_type: Platform record type.
        start_time:  Measurement time (or session start).
        end_time:    Session end; None for point measurements.
        origin_id:   Package name of the app/device that wrote the record.
        payload:     Vendor-native fields (units, nested objects, sample arrays).
    """

    metric_type: MetricType
    start_time: datetime
    end_time: datetime | None = None
    origin_id: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        """Instant used for recency ordering."""
        return self.start_time


# ---------------------------------------------------------------------------
# Typed readings (closed set consumed by the aggregator)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Measurement:
    """A single numeric value in its canonical unit."""

    metric_type: MetricType
    origin_id: str
    time: datetime
    value: float
    unit: str


@dataclass(frozen=True)
class Session:
    """An interval record (exercise or sleep).

    ``stages`` maps stage name -> minutes and is empty when the source did
    not report stages.
    """

    metric_type: MetricType
    origin_id: str
    start: datetime
    end: datetime
    title: str | None = None
    stages: dict[str, float] = field(default_factory=dict)

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


@dataclass(frozen=True)
class BloodPressure:
    origin_id: str
    time: datetime
    systolic: float
    diastolic: float


@dataclass(frozen=True)
class Flow:
    """Menstruation flow: 0 unknown, 1 light, 2 medium, 3 heavy."""

    origin_id: str
    time: datetime
    level: int


Reading = Union[Measurement, Session, BloodPressure, Flow]


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalMetricRecord:
    """The unit of persistence for wearables_data.

    Attributes:
        user_id:        Internal user UUID.
        integration_id: The external data source connection that produced it.
        metric_type:    Canonical category label (e.g. 'heart_rate').
        metric_value:   Metric-specific JSON mapping.
        recorded_at:    Bucket start, session end, or sample time (tz-aware,
                        expressed in the sync's local timezone).
    """

    user_id: UUID
    integration_id: UUID
    metric_type: str
    metric_value: dict[str, Any]
    recorded_at: datetime

    @property
    def sync_date(self) -> date:
        """Partition key: recorded_at truncated to its calendar date."""
        return self.recorded_at.date()

    @property
    def conflict_key(self) -> tuple[UUID, UUID, str, datetime]:
        return (
            self.user_id,
            self.integration_id,
            self.metric_type,
            self.recorded_at.astimezone(timezone.utc),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "integration_id": self.integration_id,
            "metric_type": self.metric_type,
            "metric_value": self.metric_value,
            "recorded_at": self.recorded_at,
            "sync_date": self.sync_date,
        }


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class HealthStore(ABC):
    """Abstract on-device health data store (Health Connect or a stand-in).

    Subclasses must implement:
        - initialize()
        - get_sdk_status()
        - read_records()
    """

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Health Store"

    @abstractmethod
    async def initialize(self) -> bool:
        """Prepare the platform client.

        Returns:
            True if the platform is usable for this sync; False otherwise.
        """

    @abstractmethod
    async def get_sdk_status(self) -> SdkStatus:
        """Return whether the platform SDK is installed and current."""

    @abstractmethod
    async def read_records(
        self, metric_type: MetricType, time_range: TimeRangeFilter
    ) -> list[RawHealthSample]:
        """Read raw records of one type inside ``time_range``.

        Raises:
            HealthStoreError: On platform-specific read failures.
        """


class WearablesGateway(ABC):
    """Sink for canonical records (the remote wearables_data table)."""

    @abstractmethod
    async def upsert(self, records: list[CanonicalMetricRecord]) -> int:
        """Idempotently write one batch.

        Returns:
            Number of records written.

        Raises:
            PersistenceError: If the batch could not be written; nothing in
                the batch is written in that case.
        """
