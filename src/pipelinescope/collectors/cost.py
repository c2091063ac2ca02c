"""Cost collector: accumulates resource cost per pipeline run."""

import dataclasses
import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable

from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.core.cost import (
    apply_usage,
    build_cost_snapshot,
    freeze,
    new_record,
    trend_point,
    usage_between,
    validate_rates,
)
from pipelinescope.core.errors import UpstreamUnavailableError
from pipelinescope.core.models import CostRecord, CostTrendPoint, PipelineRun, RateTable, TaskRun
from pipelinescope.core.ports import ClusterStateReaderPort, CostTrendStoragePort
from pipelinescope.core.snapshots import CostSnapshot
from pipelinescope.core.store import AggregationStore, ViewKind

logger = logging.getLogger(__name__)


class CostCollector(LoopingCollector):
    """Turns task run resource usage into per-run cost records.

    Each tick accounts every started run from its last accounted time up to
    now, or up to its end for a finished run. The tick that first sees a run
    finished accounts the remainder and freezes the record; frozen records
    never change again. Records of runs that have been missing from the
    cluster for longer than run_retention_seconds are dropped.

    Args:
        store: Aggregation store to publish into.
        reader: Cluster state source.
        rates: Unit prices, captured into each record on creation.
        trend_storage: Optional persistent store for per-tick trend points.
        interval_seconds: Delay between ticks.
        run_retention_seconds: How long an absent run keeps its record.
        cost_lookback_seconds: Finished runs older than this when first seen
            are ignored.
        trend_retention_seconds: Age after which trend points are deleted.
        trend_points: Number of trend points kept in the snapshot.
        clock: Time source.
    """

    name = "cost"
    kind = ViewKind.COST

    def __init__(
        self,
        store: AggregationStore,
        reader: ClusterStateReaderPort,
        rates: RateTable,
        trend_storage: CostTrendStoragePort | None = None,
        interval_seconds: float = 300.0,
        run_retention_seconds: float = 3600.0,
        cost_lookback_seconds: float = 24 * 3600.0,
        trend_retention_seconds: float = 7 * 24 * 3600.0,
        trend_points: int = 2016,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store, interval_seconds, clock)
        self._reader = reader
        self._rates = rates
        self._trend_storage = trend_storage
        self._run_retention = run_retention_seconds
        self._lookback = cost_lookback_seconds
        self._trend_retention = trend_retention_seconds
        self._records: dict[str, CostRecord] = {}
        self._last_seen: dict[str, float] = {}
        self._trend: deque[CostTrendPoint] = deque(maxlen=trend_points)

    def validate(self) -> None:
        validate_rates(self._rates)

    async def start(self) -> None:
        self.validate()
        await self._load_trend()
        self._loop.start()

    async def _load_trend(self) -> None:
        if self._trend_storage is None:
            return
        since = self._clock() - self._trend_retention
        try:
            async for point in self._trend_storage.read(since=since):
                self._trend.append(point)
        except Exception:
            logger.warning(
                "Could not load cost trend history", extra={"collector": self.name}, exc_info=True
            )

    async def tick(self) -> None:
        now = self._clock()
        try:
            runs = await self._reader.list_pipeline_runs()
            task_runs = await self._reader.list_task_runs()
        except UpstreamUnavailableError as exc:
            logger.warning(
                "Cluster read failed, keeping previous cost snapshot",
                extra={"collector": self.name, "error": str(exc)},
            )
            return

        by_owner: dict[str, list[TaskRun]] = defaultdict(list)
        for task_run in task_runs:
            if task_run.owner_key is not None:
                by_owner[task_run.owner_key].append(task_run)

        for run in runs:
            self._last_seen[run.key] = now
            record = self._account(run, by_owner.get(run.key, []), now)
            if record is not None:
                self._records[run.key] = record

        self._evict(now)

        snapshot = build_cost_snapshot(self._records, now)
        point = trend_point(snapshot)
        self._trend.append(point)
        self._publish(dataclasses.replace(snapshot, trend=tuple(self._trend)))
        await self._persist_trend(point, now)

    def _account(self, run: PipelineRun, task_runs: list[TaskRun], now: float) -> CostRecord | None:
        record = self._records.get(run.key)
        if record is not None and record.frozen:
            return record
        if run.start_time is None:
            return None
        if record is None:
            if (
                run.status.is_terminal
                and run.end_time is not None
                and run.end_time < now - self._lookback
            ):
                return None
            record = new_record(run, self._rates)

        until = now if run.end_time is None else min(now, run.end_time)
        usage = usage_between(run, task_runs, record.last_accounted_at, until)
        record = apply_usage(record, usage, until, run)
        if run.status.is_terminal:
            record = freeze(record)
        return record

    def _evict(self, now: float) -> None:
        cutoff = now - self._run_retention
        for key in [k for k, seen in self._last_seen.items() if seen < cutoff]:
            del self._last_seen[key]
            self._records.pop(key, None)

    async def _persist_trend(self, point: CostTrendPoint, now: float) -> None:
        if self._trend_storage is None:
            return
        try:
            await self._trend_storage.write(point)
            await self._trend_storage.delete_before(now - self._trend_retention)
        except Exception:
            logger.warning(
                "Could not persist cost trend point", extra={"collector": self.name}, exc_info=True
            )

    def current_snapshot(self) -> CostSnapshot | None:
        return self._store.snapshot(self.kind)

    def cost_for_run(self, namespace: str, name: str) -> CostRecord | None:
        snapshot = self.current_snapshot()
        return snapshot.for_run(namespace, name) if snapshot is not None else None
