"""Trace collector: rebuilds execution waterfalls per pipeline run."""

import logging
import time
from collections import defaultdict
from collections.abc import Callable

from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.core.errors import UpstreamUnavailableError
from pipelinescope.core.models import TaskRun, Trace
from pipelinescope.core.ports import ClusterStateReaderPort
from pipelinescope.core.snapshots import TraceSnapshot
from pipelinescope.core.store import AggregationStore, ViewKind
from pipelinescope.core.tracing import build_trace, sort_traces

logger = logging.getLogger(__name__)


class TraceCollector(LoopingCollector):
    """Publishes one trace per pipeline run, most recent first.

    Running traces are rebuilt every tick. A trace built from a finished
    run is kept as-is from then on. Traces of runs missing from the cluster
    for longer than run_retention_seconds are dropped.
    """

    name = "trace"
    kind = ViewKind.TRACE

    def __init__(
        self,
        store: AggregationStore,
        reader: ClusterStateReaderPort,
        interval_seconds: float = 30.0,
        run_retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store, interval_seconds, clock)
        self._reader = reader
        self._run_retention = run_retention_seconds
        self._traces: dict[str, Trace] = {}
        self._last_seen: dict[str, float] = {}

    async def tick(self) -> None:
        now = self._clock()
        try:
            runs = await self._reader.list_pipeline_runs()
            task_runs = await self._reader.list_task_runs()
        except UpstreamUnavailableError as exc:
            logger.warning(
                "Cluster read failed, keeping previous trace snapshot",
                extra={"collector": self.name, "error": str(exc)},
            )
            return

        by_owner: dict[str, list[TaskRun]] = defaultdict(list)
        for task_run in task_runs:
            if task_run.owner_key is not None:
                by_owner[task_run.owner_key].append(task_run)

        for run in runs:
            self._last_seen[run.key] = now
            existing = self._traces.get(run.key)
            if existing is not None and existing.status.is_terminal:
                continue
            self._traces[run.key] = build_trace(run, by_owner.get(run.key, []), now)

        cutoff = now - self._run_retention
        for key in [k for k, seen in self._last_seen.items() if seen < cutoff]:
            del self._last_seen[key]
            self._traces.pop(key, None)

        self._publish(TraceSnapshot(timestamp=now, traces=sort_traces(self._traces.values())))

    def current_snapshot(self) -> TraceSnapshot | None:
        return self._store.snapshot(self.kind)

    def get_trace(self, trace_id: str) -> Trace | None:
        snapshot = self.current_snapshot()
        return snapshot.get(trace_id) if snapshot is not None else None
