"""Tests for bucketing raw samples into canonical records."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from wearsync.wearables.aggregator import Aggregator, day_window
from wearsync.wearables.base import MetricType
from wearsync.wearables.config_loader import SyncConfig
from wearsync.wearables.prioritizer import prioritize
from wearsync.wearables.tests.conftest import (
    GOOGLE_FIT,
    HEALTH_CONNECT,
    SAMSUNG,
    TEST_INTEGRATION_ID,
    TEST_USER_ID,
    UTC,
    XIAOMI,
    sample,
)

T0 = datetime(2024, 6, 5, 8, 0, tzinfo=UTC)


@pytest.fixture
def agg(sync_config: SyncConfig) -> Aggregator:
    return Aggregator(TEST_USER_ID, TEST_INTEGRATION_ID, UTC, sync_config)


class TestHourlyHeartRate:
    def test_averages_across_origins_attributes_top_source(self, agg: Aggregator) -> None:
        samples = prioritize(
            [
                sample(MetricType.HEART_RATE, T0 + timedelta(minutes=5), XIAOMI, beatsPerMinute=75),
                sample(MetricType.HEART_RATE, T0 + timedelta(minutes=20), HEALTH_CONNECT, beatsPerMinute=70),
                sample(MetricType.HEART_RATE, T0 + timedelta(minutes=40), SAMSUNG, beatsPerMinute=72),
            ]
        )
        records = agg.hourly_heart_rate(samples)

        assert len(records) == 1
        value = records[0].metric_value
        assert records[0].recorded_at == T0
        assert records[0].metric_type == "heart_rate"
        assert value["bpm"] == 72.3
        assert value["min_bpm"] == 70
        assert value["max_bpm"] == 75
        assert value["sample_count"] == 3
        assert value["source"] == HEALTH_CONNECT

    def test_one_record_per_clock_hour(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.HEART_RATE, T0 + timedelta(minutes=59), beatsPerMinute=60),
            sample(MetricType.HEART_RATE, T0 + timedelta(minutes=61), beatsPerMinute=80),
        ]
        records = agg.hourly_heart_rate(samples)
        assert [r.recorded_at.hour for r in records] == [8, 9]

    def test_repeated_dst_hour_stays_two_records(self, sync_config: SyncConfig) -> None:
        """01:00 happens twice in New York on 2024-11-03 (EDT then EST)."""
        tz = ZoneInfo("America/New_York")
        agg = Aggregator(TEST_USER_ID, TEST_INTEGRATION_ID, tz, sync_config)
        samples = [
            sample(MetricType.HEART_RATE, datetime(2024, 11, 3, 5, 30, tzinfo=UTC), beatsPerMinute=60),
            sample(MetricType.HEART_RATE, datetime(2024, 11, 3, 6, 30, tzinfo=UTC), beatsPerMinute=100),
        ]
        records = agg.hourly_heart_rate(samples)

        assert [r.metric_value["bpm"] for r in records] == [60.0, 100.0]
        assert [r.metric_value["timestamp"] for r in records] == [
            "2024-11-03T01:00:00-04:00",
            "2024-11-03T01:00:00-05:00",
        ]
        assert len({r.conflict_key for r in records}) == 2

    def test_non_positive_values_are_dropped(self, agg: Aggregator) -> None:
        samples = [sample(MetricType.HEART_RATE, T0, beatsPerMinute=0)]
        assert agg.hourly_heart_rate(samples) == []


class TestDailySums:
    def test_steps_sum_per_local_day(self, sync_config: SyncConfig) -> None:
        tz = ZoneInfo("America/New_York")
        agg = Aggregator(TEST_USER_ID, TEST_INTEGRATION_ID, tz, sync_config)
        samples = [
            # 2024-06-05 02:00 UTC is still June 4 in New York
            sample(MetricType.STEPS, datetime(2024, 6, 5, 2, 0, tzinfo=UTC), count=1000),
            sample(MetricType.STEPS, datetime(2024, 6, 5, 14, 0, tzinfo=UTC), count=2500),
            sample(MetricType.STEPS, datetime(2024, 6, 5, 15, 0, tzinfo=UTC), count=500),
        ]
        records = agg.daily_sums(MetricType.STEPS, samples)

        assert [r.sync_date for r in records] == [date(2024, 6, 4), date(2024, 6, 5)]
        assert records[1].metric_value["count"] == 3000
        assert records[1].recorded_at == datetime(2024, 6, 5, tzinfo=tz)

    def test_energy_in_kcal(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.ACTIVE_CALORIES, T0, energy={"inJoules": 4_184_000}),
            sample(MetricType.ACTIVE_CALORIES, T0 + timedelta(hours=1), energy=15000),
        ]
        (record,) = agg.daily_sums(MetricType.ACTIVE_CALORIES, samples)
        assert record.metric_type == "active_calories_burned"
        assert record.metric_value["kcal"] == 1015.0

    def test_empty_day_has_no_record(self, agg: Aggregator) -> None:
        assert agg.daily_sums(MetricType.DISTANCE, []) == []


class TestMostRecent:
    def test_newest_sample_wins(self, agg: Aggregator) -> None:
        samples = prioritize(
            [
                sample(MetricType.WEIGHT, T0, HEALTH_CONNECT, weight={"inKilograms": 70.0}),
                sample(MetricType.WEIGHT, T0 + timedelta(days=2), SAMSUNG, weight={"inKilograms": 71.234}),
            ]
        )
        (record,) = agg.most_recent(MetricType.WEIGHT, samples)
        assert record.metric_value["kg"] == 71.23
        assert record.metric_value["source"] == SAMSUNG
        assert record.recorded_at == T0 + timedelta(days=2)

    def test_tie_keeps_precedence(self, agg: Aggregator) -> None:
        samples = prioritize(
            [
                sample(MetricType.BODY_FAT, T0, XIAOMI, percentage=21.0),
                sample(MetricType.BODY_FAT, T0, GOOGLE_FIT, percentage=20.0),
            ]
        )
        (record,) = agg.most_recent(MetricType.BODY_FAT, samples)
        assert record.metric_value["source"] == GOOGLE_FIT

    def test_blood_pressure_pair(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.BLOOD_PRESSURE, T0, systolic=118, diastolic=76),
            sample(MetricType.BLOOD_PRESSURE, T0 + timedelta(hours=3), systolic=124, diastolic=81),
        ]
        (record,) = agg.blood_pressure(samples)
        assert record.metric_value["systolic"] == 124
        assert record.metric_value["diastolic"] == 81

    def test_resting_from_lowest_heart_rate(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.HEART_RATE, T0, beatsPerMinute=71),
            sample(MetricType.HEART_RATE, T0 + timedelta(hours=2), beatsPerMinute=54),
            sample(MetricType.HEART_RATE, T0 + timedelta(hours=4), beatsPerMinute=88),
        ]
        (record,) = agg.resting_from_heart_rate(samples)
        assert record.metric_type == "resting_heart_rate"
        assert record.metric_value["bpm"] == 54
        assert record.metric_value["derived"] == "min_heart_rate"


class TestMenstruation:
    def test_heaviest_flow_per_day(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.MENSTRUATION_FLOW, T0, flow=1),
            sample(MetricType.MENSTRUATION_FLOW, T0 + timedelta(hours=6), flow=3),
        ]
        (record,) = agg.menstruation(samples)
        assert record.metric_value["flow"] == "heavy"
        assert record.metric_value["sample_count"] == 2


class TestSessions:
    def test_exercise_minutes_per_start_day(self, agg: Aggregator) -> None:
        samples = [
            sample(MetricType.EXERCISE_SESSION, T0, end=T0 + timedelta(minutes=30)),
            sample(MetricType.EXERCISE_SESSION, T0 + timedelta(hours=9), end=T0 + timedelta(hours=9, minutes=45)),
        ]
        (record,) = agg.exercise_daily(samples)
        assert record.metric_type == "exercise_minutes"
        assert record.metric_value["minutes"] == 75.0
        assert record.metric_value["session_count"] == 2

    def test_sleep_keyed_by_end_time(self, agg: Aggregator) -> None:
        start = datetime(2024, 6, 4, 23, 30, tzinfo=UTC)
        end = datetime(2024, 6, 5, 7, 0, tzinfo=UTC)
        samples = [sample(MetricType.SLEEP_SESSION, start, end=end)]

        on_end_day = agg.sleep_sessions(samples, day_window(date(2024, 6, 5), UTC))
        on_start_day = agg.sleep_sessions(samples, day_window(date(2024, 6, 4), UTC))

        assert on_start_day == []
        (record,) = on_end_day
        assert record.recorded_at == end
        assert record.metric_value["hours"] == 7.5

    def test_sleep_stage_breakdown(self, agg: Aggregator) -> None:
        start = datetime(2024, 6, 4, 23, 0, tzinfo=UTC)
        end = datetime(2024, 6, 5, 1, 0, tzinfo=UTC)
        samples = [
            sample(
                MetricType.SLEEP_SESSION,
                start,
                end=end,
                stages=[
                    {"startTime": "2024-06-04T23:00:00Z", "endTime": "2024-06-04T23:30:00Z", "stage": 1},
                    {"startTime": "2024-06-04T23:30:00Z", "endTime": "2024-06-05T01:00:00Z", "stage": 5},
                ],
            )
        ]
        (record,) = agg.sleep_sessions(samples, day_window(date(2024, 6, 5), UTC))
        assert record.metric_value["stages"] == {"awake": 30.0, "deep": 90.0}
        assert record.metric_value["asleep_hours"] == 1.5

    def test_duplicate_sessions_emitted_once(self, agg: Aggregator) -> None:
        start = datetime(2024, 6, 4, 23, 30, tzinfo=UTC)
        end = datetime(2024, 6, 5, 7, 0, tzinfo=UTC)
        samples = prioritize(
            [
                sample(MetricType.SLEEP_SESSION, start, SAMSUNG, end=end),
                sample(MetricType.SLEEP_SESSION, start, HEALTH_CONNECT, end=end),
            ]
        )
        (record,) = agg.sleep_sessions(samples, day_window(date(2024, 6, 5), UTC))
        assert record.metric_value["source"] == HEALTH_CONNECT
