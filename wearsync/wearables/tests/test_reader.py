"""Tests for the record reader."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import pytest

from wearsync.wearables.base import (
    HealthStoreError,
    InvalidRangeError,
    MetricType,
    SdkStatus,
    TimeRangeFilter,
)
from wearsync.wearables.reader import RecordReader
from wearsync.wearables.tests.conftest import (
    HEALTH_CONNECT,
    SAMSUNG,
    UTC,
    FakeHealthStore,
    sample,
)

DAY = TimeRangeFilter(
    start=datetime(2024, 6, 5, tzinfo=UTC),
    end=datetime(2024, 6, 6, tzinfo=UTC),
)


class TestRangeValidation:
    @pytest.mark.asyncio
    async def test_start_after_end_raises(self, store: FakeHealthStore) -> None:
        reader = RecordReader(store)
        bad = TimeRangeFilter(start=DAY.end, end=DAY.start)
        with pytest.raises(InvalidRangeError):
            await reader.read(MetricType.STEPS, bad)
        assert store.reads == []

    @pytest.mark.asyncio
    async def test_empty_window_raises(self, store: FakeHealthStore) -> None:
        reader = RecordReader(store)
        with pytest.raises(InvalidRangeError):
            await reader.read(MetricType.STEPS, TimeRangeFilter(DAY.start, DAY.start))

    @pytest.mark.asyncio
    async def test_unbounded_window_raises(self, store: FakeHealthStore) -> None:
        reader = RecordReader(store)
        with pytest.raises(InvalidRangeError):
            await reader.read(MetricType.STEPS, TimeRangeFilter(DAY.start, None))  # type: ignore[arg-type]


class TestRead:
    @pytest.mark.asyncio
    async def test_returns_prioritized_samples(self, store: FakeHealthStore) -> None:
        t = DAY.start + timedelta(hours=8)
        store.add(
            sample(MetricType.STEPS, t, SAMSUNG, count=5),
            sample(MetricType.STEPS, t, HEALTH_CONNECT, count=7),
        )
        samples = await RecordReader(store).read(MetricType.STEPS, DAY)
        assert [s.origin_id for s in samples] == [HEALTH_CONNECT, SAMSUNG]

    @pytest.mark.asyncio
    async def test_only_requested_type(self, store: FakeHealthStore) -> None:
        t = DAY.start + timedelta(hours=8)
        store.add(sample(MetricType.STEPS, t, count=5), sample(MetricType.WEIGHT, t, weight=70))
        samples = await RecordReader(store).read(MetricType.WEIGHT, DAY)
        assert [s.metric_type for s in samples] == [MetricType.WEIGHT]

    @pytest.mark.asyncio
    async def test_drops_samples_starting_outside_window(self, store: FakeHealthStore) -> None:
        """A session overlapping the window but starting before it is dropped."""
        store.add(
            sample(
                MetricType.SLEEP_SESSION,
                DAY.start - timedelta(minutes=30),
                end=DAY.start + timedelta(hours=7),
            )
        )
        assert await RecordReader(store).read(MetricType.SLEEP_SESSION, DAY) == []

    @pytest.mark.asyncio
    async def test_unavailable_platform_returns_empty(self) -> None:
        store = FakeHealthStore(status=SdkStatus.UNAVAILABLE)
        store.add(sample(MetricType.STEPS, DAY.start, count=5))
        reader = RecordReader(store)

        assert await reader.read(MetricType.STEPS, DAY) == []
        assert reader.sdk_status is SdkStatus.UNAVAILABLE
        assert store.reads == []

    @pytest.mark.asyncio
    async def test_platform_error_is_absorbed(
        self, store: FakeHealthStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.failures[MetricType.STEPS] = HealthStoreError("permission denied")
        with caplog.at_level(logging.WARNING, logger="wearsync.wearables.reader"):
            assert await RecordReader(store).read(MetricType.STEPS, DAY) == []
        assert "Steps" in caplog.text
        assert "permission denied" in caplog.text

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, store: FakeHealthStore) -> None:
        store.failures[MetricType.STEPS] = RuntimeError("bridge bug")
        with pytest.raises(RuntimeError):
            await RecordReader(store).read(MetricType.STEPS, DAY)

    @pytest.mark.asyncio
    async def test_status_checked_once(self, store: FakeHealthStore) -> None:
        reader = RecordReader(store)
        await reader.read(MetricType.STEPS, DAY)
        store.status = SdkStatus.UNAVAILABLE
        await reader.read(MetricType.STEPS, DAY)
        assert len(store.reads) == 2
