"""Sync orchestrator: multi-day, multi-category backfill into wearables_data.

One run walks six metric categories in order:

    heart_rate → activity → sleep → body → nutrition → vitals

For each category it reads raw samples day by day (or over the whole range
for most-recent metrics), aggregates them into canonical records, and adds
them to the run's buffer.  After the last category the buffer is
de-duplicated by conflict key and written in fixed-size batches.

A failing category is logged and skipped; a failing batch is logged and the
next batch is attempted.  Only a platform that cannot be initialized at all
aborts the run.

Usage::

    report = await sync_to_wearables_data(
        user_id, integration_id, 7,
        store=HealthConnectBridge(base_url),
        gateway=PostgresWearablesGateway(),
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, Iterable
from uuid import UUID

from wearsync.wearables.aggregator import Aggregator, day_start, day_window
from wearsync.wearables.base import (
    CanonicalMetricRecord,
    HealthStore,
    HealthStoreError,
    MetricType,
    RawHealthSample,
    SdkStatus,
    SyncInitializationError,
    TimeRangeFilter,
    WearablesGateway,
    canonical_name,
)
from wearsync.wearables.config_loader import SyncConfig, get_sync_config
from wearsync.wearables.reader import RecordReader
from wearsync.wearables.sync.dedup import SyncRunLocks, dedupe_records, get_run_locks

logger = logging.getLogger("wearsync.wearables.sync.orchestrator")

CATEGORIES: tuple[str, ...] = (
    "heart_rate",
    "activity",
    "sleep",
    "body",
    "nutrition",
    "vitals",
)

ACTIVITY_SUM_METRICS = (MetricType.STEPS, MetricType.DISTANCE, MetricType.ACTIVE_CALORIES)
NUTRITION_SUM_METRICS = (MetricType.NUTRITION, MetricType.HYDRATION)
BODY_METRICS = (
    MetricType.WEIGHT,
    MetricType.HEIGHT,
    MetricType.BODY_FAT,
    MetricType.BASAL_METABOLIC_RATE,
)
VITAL_METRICS = (
    MetricType.OXYGEN_SATURATION,
    MetricType.RESPIRATORY_RATE,
    MetricType.BODY_TEMPERATURE,
)


class SyncState(str, Enum):
    INITIALIZING = "initializing"
    READING = "reading"
    AGGREGATING = "aggregating"
    BATCHING = "batching"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class SyncReport:
    """Outcome of one sync run.

    Attributes:
        user_id:              Internal user UUID.
        integration_id:       Data source connection that was synced.
        days_to_sync:         Number of local calendar days covered.
        status:               'success', 'partial', 'error', 'skipped' or 'cancelled'.
        state:                Last state reached.
        platform_status:      SDK status seen at initialization.
        categories_succeeded: Categories that completed.
        categories_failed:    Category -> error message.
        records_built:        Distinct records produced.
        records_written:      Records acknowledged by the gateway.
        batches_total:        Batches attempted.
        batches_failed:       Batches the gateway rejected.
        started_at:           UTC start time.
        finished_at:          UTC end time.
    """

    user_id: UUID
    integration_id: UUID
    days_to_sync: int
    status: str = "success"
    state: SyncState = SyncState.INITIALIZING
    platform_status: str | None = None
    categories_succeeded: list[str] = field(default_factory=list)
    categories_failed: dict[str, str] = field(default_factory=dict)
    records_built: int = 0
    records_written: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def partial_failure_count(self) -> int:
        return len(self.categories_failed) + self.batches_failed

    def _finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)
        if self.status in ("skipped", "cancelled"):
            return
        if self.partial_failure_count == 0:
            self.status = "success"
        elif not self.categories_succeeded or (
            self.batches_total and self.batches_failed == self.batches_total
        ):
            self.status = "error"
        else:
            self.status = "partial"


@dataclass
class _RunContext:
    reader: RecordReader
    aggregator: Aggregator
    days: list[date]
    now: datetime
    report: SyncReport

    async def read(
        self, metric_type: MetricType, window: TimeRangeFilter
    ) -> list[RawHealthSample]:
        """Read through the reader; the samples returned are aggregated next."""
        self.report.state = SyncState.READING
        samples = await self.reader.read(metric_type, window)
        self.report.state = SyncState.AGGREGATING
        return samples

    @property
    def today(self) -> date:
        return self.days[-1]

    @property
    def full_range(self) -> TimeRangeFilter:
        return TimeRangeFilter(
            start=day_start(self.days[0], self.now.tzinfo),
            end=day_start(self.today + timedelta(days=1), self.now.tzinfo),
        )


class SyncOrchestrator:
    """Drive one user's sync from the health store into the gateway.

    The orchestrator holds no per-user state between runs; everything a run
    accumulates lives in that run's local buffer.

    Args:
        store:   Platform health store.
        gateway: Remote sink for canonical records.
        tz:      Timezone defining local hours/days (UTC by default).
        config:  Sync rules; the global config by default.
        locks:   Run-lock registry; the process-wide one by default.
        clock:   Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: HealthStore,
        gateway: WearablesGateway,
        *,
        tz: tzinfo | None = None,
        config: SyncConfig | None = None,
        locks: SyncRunLocks | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._tz = tz or timezone.utc
        self._config = config or get_sync_config()
        self._locks = locks or get_run_locks()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        user_id: UUID,
        integration_id: UUID,
        days_to_sync: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        force: bool = False,
    ) -> SyncReport:
        """Run one sync.

        Args:
            user_id:        Internal user UUID.
            integration_id: Data source connection to sync.
            days_to_sync:   Local calendar days ending today (default from config).
            cancel_event:   Checked between categories and between batches.
            force:          Ignore the minimum interval since the last run.

        Returns:
            SyncReport describing what succeeded and what failed.

        Raises:
            ValueError:              If days_to_sync is out of range.
            SyncInProgressError:     If a run for the same key is active.
            SyncInitializationError: If the platform cannot be initialized.
        """
        run_cfg = self._config.sync
        days = run_cfg.default_days if days_to_sync is None else days_to_sync
        if not 1 <= days <= run_cfg.max_days:
            raise ValueError(f"days_to_sync must be between 1 and {run_cfg.max_days}, got {days}")

        report = SyncReport(user_id=user_id, integration_id=integration_id, days_to_sync=days)

        since = self._locks.seconds_since_last_run(user_id, integration_id)
        if not force and since is not None and since < run_cfg.min_interval_seconds:
            logger.info(
                "Skipping sync for %s/%s: last run %.0fs ago", user_id, integration_id, since
            )
            report.status = "skipped"
            report._finish()
            return report

        async with self._locks.hold(user_id, integration_id):
            await self._run_locked(report, cancel_event)

        if report.status != "cancelled":
            self._locks.mark_completed(user_id, integration_id)
        logger.info(
            "Sync complete: %s/%s → %d/%d records written, status=%s, failures=%d",
            user_id,
            integration_id,
            report.records_written,
            report.records_built,
            report.status,
            report.partial_failure_count,
        )
        return report

    async def _run_locked(
        self, report: SyncReport, cancel_event: asyncio.Event | None
    ) -> None:
        report.state = SyncState.INITIALIZING
        await self._initialize()

        reader = RecordReader(self._store)
        try:
            status = await reader.check_status()
        except HealthStoreError as exc:
            raise SyncInitializationError(
                f"{self._store.DISPLAY_NAME} SDK status unavailable: {exc}"
            ) from exc
        report.platform_status = status.value
        if status is not SdkStatus.AVAILABLE:
            logger.warning(
                "%s SDK status is %s; this sync will find no data",
                self._store.DISPLAY_NAME,
                status.value,
            )

        now = self._clock().astimezone(self._tz)
        today = now.date()
        ctx = _RunContext(
            reader=reader,
            aggregator=Aggregator(
                report.user_id, report.integration_id, self._tz, self._config
            ),
            days=[today - timedelta(days=i) for i in range(report.days_to_sync - 1, -1, -1)],
            now=now,
            report=report,
        )

        buffer: list[CanonicalMetricRecord] = []
        for category in CATEGORIES:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Sync cancelled before category %s", category)
                report.status = "cancelled"
                report._finish()
                return
            report.state = SyncState.READING
            handler = getattr(self, f"_sync_{category}")
            try:
                records = await handler(ctx)
            except Exception as exc:
                logger.error(
                    "Category %s failed: %s",
                    category,
                    exc,
                    extra={"category": category},
                )
                report.categories_failed[category] = str(exc) or type(exc).__name__
                continue
            buffer.extend(records)
            report.categories_succeeded.append(category)
            logger.debug(
                "Category %s produced %d records",
                category,
                len(records),
                extra={"category": category},
            )

        await self._persist(buffer, report, cancel_event)
        if report.status != "cancelled":
            report.state = SyncState.DONE
        report._finish()

    async def _initialize(self) -> None:
        try:
            ready = await self._store.initialize()
        except Exception as exc:
            raise SyncInitializationError(
                f"{self._store.DISPLAY_NAME} could not be initialized: {exc}"
            ) from exc
        if not ready:
            raise SyncInitializationError(
                f"{self._store.DISPLAY_NAME} could not be initialized"
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(
        self,
        buffer: list[CanonicalMetricRecord],
        report: SyncReport,
        cancel_event: asyncio.Event | None,
    ) -> None:
        report.state = SyncState.BATCHING
        records = dedupe_records(buffer)
        report.records_built = len(records)
        size = self._config.sync.batch_size
        batches = [records[i : i + size] for i in range(0, len(records), size)]

        report.state = SyncState.PERSISTING
        for index, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Sync cancelled before batch %d", index)
                report.status = "cancelled"
                return
            report.batches_total += 1
            try:
                report.records_written += await self._gateway.upsert(batch)
            except Exception as exc:
                report.batches_failed += 1
                logger.error(
                    "Batch %d (%d records) failed: %s",
                    index,
                    len(batch),
                    exc,
                    extra={"batch_index": index, "batch_size": len(batch)},
                )

    # ------------------------------------------------------------------
    # Shared read helpers
    # ------------------------------------------------------------------

    async def _read_days(
        self,
        ctx: _RunContext,
        metric_type: MetricType,
        build: Callable[[list[RawHealthSample]], list[CanonicalMetricRecord]],
    ) -> list[CanonicalMetricRecord]:
        records: list[CanonicalMetricRecord] = []
        for day in ctx.days:
            samples = await ctx.read(metric_type, day_window(day, self._tz))
            records.extend(build(samples))
        return records

    async def _with_fallback(
        self,
        ctx: _RunContext,
        metric_type: MetricType,
        records: list[CanonicalMetricRecord],
        build: Callable[[list[RawHealthSample], TimeRangeFilter], list[CanonicalMetricRecord]],
        needed: bool,
    ) -> list[CanonicalMetricRecord]:
        """Read once over the extended lookback when the primary window is empty.

        The most recent qualifying record found is added under its own key;
        it is never relabeled as today.
        """
        label = canonical_name(metric_type)
        lookback = self._config.fallback_for(label)
        if not needed or lookback is None:
            return records
        window = day_window(ctx.today, self._tz, days_before=lookback)
        found = build(await ctx.read(metric_type, window), window)
        if not found:
            return records
        latest = max(found, key=lambda r: r.recorded_at.astimezone(timezone.utc))
        logger.info(
            "No %s in primary window; using %s from extended %d-day window",
            label,
            latest.sync_date,
            lookback,
            extra={"metric_type": label},
        )
        return records + [latest]

    @staticmethod
    def _has_day(records: Iterable[CanonicalMetricRecord], day: date) -> bool:
        return any(r.sync_date == day for r in records)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def _sync_heart_rate(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        return await self._read_days(
            ctx, MetricType.HEART_RATE, ctx.aggregator.hourly_heart_rate
        )

    async def _sync_activity(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        agg = ctx.aggregator
        records: list[CanonicalMetricRecord] = []

        for metric_type in ACTIVITY_SUM_METRICS:
            def build(samples, window=None, _mt=metric_type):
                return agg.daily_sums(_mt, samples)

            found = await self._read_days(ctx, metric_type, build)
            found = await self._with_fallback(
                ctx, metric_type, found, build, not self._has_day(found, ctx.today)
            )
            records.extend(found)

        exercise = await self._read_days(ctx, MetricType.EXERCISE_SESSION, agg.exercise_daily)
        exercise = await self._with_fallback(
            ctx,
            MetricType.EXERCISE_SESSION,
            exercise,
            lambda samples, window: agg.exercise_daily(samples),
            not self._has_day(exercise, ctx.today),
        )
        records.extend(exercise)
        return records

    async def _sync_sleep(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        agg = ctx.aggregator
        records: list[CanonicalMetricRecord] = []
        for day in ctx.days:
            target = day_window(day, self._tz)
            # one day back so sessions that started before midnight are seen
            samples = await ctx.read(
                MetricType.SLEEP_SESSION, day_window(day, self._tz, days_before=1)
            )
            records.extend(agg.sleep_sessions(samples, target))

        return await self._with_fallback(
            ctx,
            MetricType.SLEEP_SESSION,
            records,
            agg.sleep_sessions,
            not self._has_day(records, ctx.today),
        )

    async def _sync_body(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        records: list[CanonicalMetricRecord] = []
        window = ctx.full_range
        for metric_type in BODY_METRICS:
            samples = await ctx.read(metric_type, window)
            records.extend(ctx.aggregator.most_recent(metric_type, samples))
        return records

    async def _sync_nutrition(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        records: list[CanonicalMetricRecord] = []
        for metric_type in NUTRITION_SUM_METRICS:
            records.extend(
                await self._read_days(
                    ctx,
                    metric_type,
                    lambda samples, _mt=metric_type: ctx.aggregator.daily_sums(_mt, samples),
                )
            )
        return records

    async def _sync_vitals(
        self, ctx: _RunContext
    ) -> list[CanonicalMetricRecord]:
        agg = ctx.aggregator
        window = ctx.full_range
        records: list[CanonicalMetricRecord] = []

        resting = agg.most_recent(
            MetricType.RESTING_HEART_RATE,
            await ctx.read(MetricType.RESTING_HEART_RATE, window),
        )
        if not resting:
            hours = self._config.vitals.resting_hr_fallback_hours
            recent = TimeRangeFilter(start=ctx.now - timedelta(hours=hours), end=ctx.now)
            resting = agg.resting_from_heart_rate(
                await ctx.read(MetricType.HEART_RATE, recent)
            )
        records.extend(resting)

        records.extend(
            agg.blood_pressure(await ctx.read(MetricType.BLOOD_PRESSURE, window))
        )
        for metric_type in VITAL_METRICS:
            records.extend(
                agg.most_recent(metric_type, await ctx.read(metric_type, window))
            )

        glucose = agg.most_recent(
            MetricType.BLOOD_GLUCOSE, await ctx.read(MetricType.BLOOD_GLUCOSE, window)
        )
        glucose = await self._with_fallback(
            ctx,
            MetricType.BLOOD_GLUCOSE,
            glucose,
            lambda samples, w: agg.most_recent(MetricType.BLOOD_GLUCOSE, samples),
            not glucose,
        )
        records.extend(glucose)

        records.extend(
            agg.menstruation(await ctx.read(MetricType.MENSTRUATION_FLOW, window))
        )
        return records


async def sync_to_wearables_data(
    user_id: UUID,
    integration_id: UUID,
    days_to_sync: int | None = None,
    *,
    store: HealthStore,
    gateway: WearablesGateway,
    tz: tzinfo | None = None,
    config: SyncConfig | None = None,
    locks: SyncRunLocks | None = None,
    cancel_event: asyncio.Event | None = None,
    force: bool = False,
) -> SyncReport:
    """Sync the last ``days_to_sync`` local days for one user + integration.

    Raises only on unrecoverable failures (see SyncOrchestrator.run);
    per-category and per-batch failures are reported in the SyncReport.
    """
    orchestrator = SyncOrchestrator(store, gateway, tz=tz, config=config, locks=locks)
    return await orchestrator.run(
        user_id,
        integration_id,
        days_to_sync,
        cancel_event=cancel_event,
        force=force,
    )
