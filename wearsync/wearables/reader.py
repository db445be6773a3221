"""Record reader: one metric type over one time window from the health store."""

from __future__ import annotations

import logging

from wearsync.wearables.base import (
    HealthStore,
    HealthStoreError,
    MetricType,
    RawHealthSample,
    SdkStatus,
    TimeRangeFilter,
)
from wearsync.wearables.prioritizer import prioritize

logger = logging.getLogger("wearsync.wearables.reader")


class RecordReader:
    """Read raw samples from a HealthStore and return them prioritized.

    The SDK status is queried once per reader; a run builds a fresh reader.
    When the platform is not available every read returns an empty list;
    a day with no data and a day with an unavailable platform look the same
    here.  The orchestrator inspects ``sdk_status`` to log that once.

    Usage::

        reader = RecordReader(store)
        samples = await reader.read(MetricType.STEPS, TimeRangeFilter(start, end))
    """

    def __init__(self, store: HealthStore) -> None:
        self._store = store
        self._sdk_status: SdkStatus | None = None

    @property
    def sdk_status(self) -> SdkStatus | None:
        """Cached SDK status, or None before the first read/check."""
        return self._sdk_status

    async def check_status(self) -> SdkStatus:
        if self._sdk_status is None:
            self._sdk_status = await self._store.get_sdk_status()
        return self._sdk_status

    async def read(
        self, metric_type: MetricType, time_range: TimeRangeFilter
    ) -> list[RawHealthSample]:
        """Return samples of ``metric_type`` inside ``time_range``, prioritized.

        Raises:
            InvalidRangeError: If the window is unbounded or start >= end.
        """
        time_range.validate()

        if await self.check_status() is not SdkStatus.AVAILABLE:
            return []

        try:
            samples = await self._store.read_records(metric_type, time_range)
        except HealthStoreError as exc:
            logger.warning(
                "Read failed for %s: %s",
                metric_type.value,
                exc,
                extra={"metric_type": metric_type.value},
            )
            return []

        in_window = [s for s in samples if time_range.contains(s.start_time)]
        dropped = len(samples) - len(in_window)
        if dropped:
            logger.debug(
                "Dropped %d %s samples outside the window",
                dropped,
                metric_type.value,
                extra={"metric_type": metric_type.value},
            )
        return prioritize(in_window)
