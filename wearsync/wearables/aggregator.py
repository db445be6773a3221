"""Bucket prioritized raw samples into canonical per-metric records.

Strategies:
    hourly_heart_rate  — clock-hour buckets with avg/min/max/count
    daily_sums         — per local calendar day sum (steps, distance, energy, water)
    most_recent        — single newest value in the window (body + vitals)
    exercise_daily     — per day sum of session minutes
    sleep_sessions     — one record per session, keyed by its end time

Every strategy is sparse: an empty or non-positive aggregate yields no record.
Heart-rate averages include every origin in the bucket; source precedence
only decides which origin the record is attributed to.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable
from uuid import UUID

from wearsync.wearables.base import (
    BloodPressure,
    CanonicalMetricRecord,
    Flow,
    Measurement,
    MetricType,
    RawHealthSample,
    Reading,
    Session,
    TimeRangeFilter,
    canonical_name,
)
from wearsync.wearables.config_loader import SyncConfig, get_sync_config
from wearsync.wearables.extractor import to_reading

logger = logging.getLogger("wearsync.wearables.aggregator")

# Daily-sum metric -> (metric_value key, decimals; 0 means integer)
DAILY_SUM_FIELDS: dict[MetricType, tuple[str, int]] = {
    MetricType.STEPS: ("count", 0),
    MetricType.DISTANCE: ("meters", 1),
    MetricType.ACTIVE_CALORIES: ("kcal", 1),
    MetricType.NUTRITION: ("kcal", 1),
    MetricType.HYDRATION: ("liters", 3),
}

# Most-recent metric -> metric_value key
MOST_RECENT_FIELDS: dict[MetricType, str] = {
    MetricType.WEIGHT: "kg",
    MetricType.HEIGHT: "meters",
    MetricType.BODY_FAT: "percentage",
    MetricType.BLOOD_GLUCOSE: "mg_dl",
    MetricType.BASAL_METABOLIC_RATE: "kcal_per_day",
    MetricType.OXYGEN_SATURATION: "percentage",
    MetricType.RESPIRATORY_RATE: "brpm",
    MetricType.BODY_TEMPERATURE: "celsius",
    MetricType.RESTING_HEART_RATE: "bpm",
}

FLOW_NAMES: dict[int, str] = {0: "unknown", 1: "light", 2: "medium", 3: "heavy"}

# Stages that count as time asleep.
ASLEEP_STAGES = frozenset({"sleeping", "light", "deep", "rem"})


def day_start(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def day_window(day: date, tz: tzinfo, days_before: int = 0) -> TimeRangeFilter:
    """Local-calendar window ``[day - days_before 00:00, day + 1 00:00)``."""
    start = day_start(day - timedelta(days=days_before), tz)
    return TimeRangeFilter(start=start, end=day_start(day + timedelta(days=1), tz))


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


class Aggregator:
    """Turn prioritized raw samples into CanonicalMetricRecords for one user.

    Args:
        user_id:        Internal user UUID.
        integration_id: The data source connection being synced.
        tz:             Timezone defining local hours and calendar days.
        config:         Sync rules (thresholds); the global config by default.
    """

    def __init__(
        self,
        user_id: UUID,
        integration_id: UUID,
        tz: tzinfo,
        config: SyncConfig | None = None,
    ) -> None:
        self._user_id = user_id
        self._integration_id = integration_id
        self._tz = tz
        self._config = config or get_sync_config()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(
        self, metric_type: MetricType, value: dict, recorded_at: datetime
    ) -> CanonicalMetricRecord:
        return CanonicalMetricRecord(
            user_id=self._user_id,
            integration_id=self._integration_id,
            metric_type=canonical_name(metric_type),
            metric_value=value,
            recorded_at=recorded_at.astimezone(self._tz),
        )

    def _local_date(self, instant: datetime) -> date:
        return instant.astimezone(self._tz).date()

    def readings(self, samples: Iterable[RawHealthSample]) -> list[Reading]:
        """Convert raw samples to typed readings, keeping their order."""
        out: list[Reading] = []
        skipped = 0
        for sample in samples:
            reading = to_reading(sample, self._config.thresholds)
            if reading is None:
                skipped += 1
            else:
                out.append(reading)
        if skipped:
            logger.debug("Skipped %d samples with unrecognized shape", skipped)
        return out

    def _measurements(
        self, metric_type: MetricType, samples: Iterable[RawHealthSample]
    ) -> list[Measurement]:
        return [
            r
            for r in self.readings(samples)
            if isinstance(r, Measurement) and r.metric_type is metric_type and _positive(r.value)
        ]

    # ------------------------------------------------------------------
    # Hourly statistic
    # ------------------------------------------------------------------

    def hourly_heart_rate(
        self, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """One heart_rate record per non-empty local clock hour."""
        # keyed by the UTC instant so both repeated hours of a DST fall-back stay apart
        buckets: dict[datetime, list[Measurement]] = {}
        for m in self._measurements(MetricType.HEART_RATE, samples):
            local_hour = m.time.astimezone(self._tz).replace(minute=0, second=0, microsecond=0)
            buckets.setdefault(local_hour.astimezone(timezone.utc), []).append(m)

        records = []
        for instant in sorted(buckets):
            items = buckets[instant]
            hour = instant.astimezone(self._tz)
            values = [m.value for m in items]
            # items keep prioritized order: first is the attributed source
            records.append(
                self._record(
                    MetricType.HEART_RATE,
                    {
                        "bpm": round(sum(values) / len(values), 1),
                        "min_bpm": min(values),
                        "max_bpm": max(values),
                        "sample_count": len(values),
                        "source": items[0].origin_id,
                        "timestamp": hour.isoformat(),
                    },
                    hour,
                )
            )
        return records

    # ------------------------------------------------------------------
    # Daily sum
    # ------------------------------------------------------------------

    def daily_sums(
        self, metric_type: MetricType, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """One record per local day with a positive total."""
        key, decimals = DAILY_SUM_FIELDS[metric_type]
        by_day: dict[date, list[Measurement]] = {}
        for m in self._measurements(metric_type, samples):
            by_day.setdefault(self._local_date(m.time), []).append(m)

        records = []
        for day in sorted(by_day):
            items = by_day[day]
            total = sum(m.value for m in items)
            if not _positive(total):
                continue
            amount = int(round(total)) if decimals == 0 else round(total, decimals)
            records.append(
                self._record(
                    metric_type,
                    {
                        key: amount,
                        "source": items[0].origin_id,
                        "sample_count": len(items),
                        "date": day.isoformat(),
                    },
                    day_start(day, self._tz),
                )
            )
        return records

    # ------------------------------------------------------------------
    # Most recent
    # ------------------------------------------------------------------

    def most_recent(
        self, metric_type: MetricType, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """The newest value in the window; ties keep precedence order."""
        measurements = self._measurements(metric_type, samples)
        if not measurements:
            return []
        winner = sorted(measurements, key=lambda m: m.time, reverse=True)[0]
        recorded_at = winner.time.astimezone(self._tz)
        return [
            self._record(
                metric_type,
                {
                    MOST_RECENT_FIELDS[metric_type]: round(winner.value, 2),
                    "source": winner.origin_id,
                    "timestamp": recorded_at.isoformat(),
                },
                recorded_at,
            )
        ]

    def blood_pressure(
        self, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """Most recent systolic/diastolic pair as one blood_pressure record."""
        pairs = [
            r
            for r in self.readings(samples)
            if isinstance(r, BloodPressure) and _positive(r.systolic) and _positive(r.diastolic)
        ]
        if not pairs:
            return []
        winner = sorted(pairs, key=lambda r: r.time, reverse=True)[0]
        recorded_at = winner.time.astimezone(self._tz)
        return [
            self._record(
                MetricType.BLOOD_PRESSURE,
                {
                    "systolic": round(winner.systolic),
                    "diastolic": round(winner.diastolic),
                    "source": winner.origin_id,
                    "timestamp": recorded_at.isoformat(),
                },
                recorded_at,
            )
        ]

    def resting_from_heart_rate(
        self, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """Derive resting heart rate as the lowest heart-rate sample."""
        measurements = self._measurements(MetricType.HEART_RATE, samples)
        if not measurements:
            return []
        lowest = min(measurements, key=lambda m: m.value)
        recorded_at = lowest.time.astimezone(self._tz)
        return [
            self._record(
                MetricType.RESTING_HEART_RATE,
                {
                    "bpm": lowest.value,
                    "source": lowest.origin_id,
                    "timestamp": recorded_at.isoformat(),
                    "derived": "min_heart_rate",
                },
                recorded_at,
            )
        ]

    def menstruation(
        self, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """One record per local day with a known flow level."""
        by_day: dict[date, list[Flow]] = {}
        for r in self.readings(samples):
            if isinstance(r, Flow) and r.level > 0:
                by_day.setdefault(self._local_date(r.time), []).append(r)

        records = []
        for day in sorted(by_day):
            items = by_day[day]
            level = max(f.level for f in items)
            records.append(
                self._record(
                    MetricType.MENSTRUATION_FLOW,
                    {
                        "flow": FLOW_NAMES.get(level, "unknown"),
                        "level": level,
                        "sample_count": len(items),
                        "source": items[0].origin_id,
                        "date": day.isoformat(),
                    },
                    day_start(day, self._tz),
                )
            )
        return records

    # ------------------------------------------------------------------
    # Session durations
    # ------------------------------------------------------------------

    def _sessions(
        self, metric_type: MetricType, samples: Iterable[RawHealthSample]
    ) -> list[Session]:
        return [
            r
            for r in self.readings(samples)
            if isinstance(r, Session) and r.metric_type is metric_type and r.duration_minutes > 0
        ]

    def exercise_daily(
        self, samples: Iterable[RawHealthSample]
    ) -> list[CanonicalMetricRecord]:
        """Exercise minutes summed per local start day."""
        by_day: dict[date, list[Session]] = {}
        for s in self._sessions(MetricType.EXERCISE_SESSION, samples):
            by_day.setdefault(self._local_date(s.start), []).append(s)

        records = []
        for day in sorted(by_day):
            items = by_day[day]
            minutes = sum(s.duration_minutes for s in items)
            records.append(
                self._record(
                    MetricType.EXERCISE_SESSION,
                    {
                        "minutes": round(minutes, 1),
                        "session_count": len(items),
                        "source": items[0].origin_id,
                        "date": day.isoformat(),
                    },
                    day_start(day, self._tz),
                )
            )
        return records

    def sleep_sessions(
        self, samples: Iterable[RawHealthSample], target: TimeRangeFilter
    ) -> list[CanonicalMetricRecord]:
        """One sleep_hours record per session ending inside ``target``.

        The caller reads with a window extended one day back so sessions that
        cross midnight are seen; the end-time filter keeps each session on
        exactly one day.
        """
        records = []
        seen_ends: set[datetime] = set()
        for s in self._sessions(MetricType.SLEEP_SESSION, samples):
            if not target.contains(s.end) or s.end in seen_ends:
                continue
            seen_ends.add(s.end)
            end = s.end.astimezone(self._tz)
            value: dict = {
                "hours": round(s.duration_minutes / 60.0, 2),
                "start": s.start.astimezone(self._tz).isoformat(),
                "end": end.isoformat(),
                "source": s.origin_id,
            }
            if s.stages:
                value["stages"] = {name: round(m, 1) for name, m in sorted(s.stages.items())}
                asleep = sum(m for name, m in s.stages.items() if name in ASLEEP_STAGES)
                value["asleep_hours"] = round(asleep / 60.0, 2)
            records.append(self._record(MetricType.SLEEP_SESSION, value, end))
        return records
