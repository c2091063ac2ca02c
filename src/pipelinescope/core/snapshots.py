"""Immutable per-view snapshots published into the aggregation store."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from pipelinescope.core.models import (
    ComponentHealth,
    CostRecord,
    CostTrendPoint,
    HealthState,
    Insight,
    InsightCategory,
    Sample,
    SeriesKey,
    Severity,
    Trace,
)

_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class RunMetrics:
    """Aggregated run statistics for one pipeline or task.

    Attributes:
        name: Pipeline or task name.
        namespace: Namespace the runs belong to.
        total_runs: Completed runs counted by the duration histogram.
        successful_runs: Runs with status "success".
        failed_runs: Runs with status "failed".
        success_rate: successful_runs / total_runs as a percentage.
        average_duration: Histogram sum / count, in seconds.
        p50_duration: Median of the retained duration history.
        p95_duration: 95th percentile of the retained duration history.
        p99_duration: 99th percentile of the retained duration history.
        last_run_time: Timestamp of the last scrape that saw new runs.
        duration_history: (timestamp, mean duration) per scrape interval
            in which runs completed, oldest first.
    """

    name: str
    namespace: str
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    p50_duration: float = 0.0
    p95_duration: float = 0.0
    p99_duration: float = 0.0
    last_run_time: float = 0.0
    duration_history: tuple[tuple[float, float], ...] = ()

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time view of scraped pipeline metrics."""

    timestamp: float
    running_pipelines: int = 0
    running_tasks: int = 0
    total_pipelines: int = 0
    successful_pipelines: int = 0
    failed_pipelines: int = 0
    total_tasks: int = 0
    success_rate: float = 0.0
    average_pipeline_duration: float = 0.0
    average_task_duration: float = 0.0
    pipeline_metrics: Mapping[str, RunMetrics] = _EMPTY
    task_metrics: Mapping[str, RunMetrics] = _EMPTY
    series: Mapping[SeriesKey, tuple[Sample, ...]] = _EMPTY

    def series_for(self, name: str) -> dict[SeriesKey, tuple[Sample, ...]]:
        """Return all series with the given metric name."""
        return {key: samples for key, samples in self.series.items() if key.name == name}


@dataclass(frozen=True)
class CostSummary:
    """Sum over a set of cost records."""

    run_count: int = 0
    cpu_cost: float = 0.0
    memory_cost: float = 0.0
    storage_cost: float = 0.0
    cpu_hours: float = 0.0
    memory_gb_hours: float = 0.0
    storage_gb_hours: float = 0.0
    total_cost: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "total_cost", self.cpu_cost + self.memory_cost + self.storage_cost
        )

    @property
    def average_cost_per_run(self) -> float:
        if self.run_count == 0:
            return 0.0
        return self.total_cost / self.run_count


@dataclass(frozen=True)
class PipelineCost:
    """Cost of all tracked runs of one pipeline."""

    pipeline: str
    namespace: str
    summary: CostSummary

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.pipeline}"


def summarize_costs(records: Iterable[CostRecord]) -> CostSummary:
    """Sum cost and usage over records. Pure aggregation, no recomputation."""
    run_count = 0
    cpu = memory = storage = 0.0
    cpu_hours = memory_gb_hours = storage_gb_hours = 0.0
    for record in records:
        run_count += 1
        cpu += record.cpu_cost
        memory += record.memory_cost
        storage += record.storage_cost
        cpu_hours += record.cpu_hours
        memory_gb_hours += record.memory_gb_hours
        storage_gb_hours += record.storage_gb_hours
    return CostSummary(
        run_count=run_count,
        cpu_cost=cpu,
        memory_cost=memory,
        storage_cost=storage,
        cpu_hours=cpu_hours,
        memory_gb_hours=memory_gb_hours,
        storage_gb_hours=storage_gb_hours,
    )


@dataclass(frozen=True)
class CostSnapshot:
    """Cost records for all tracked pipeline runs plus their aggregates."""

    timestamp: float
    records: Mapping[str, CostRecord] = _EMPTY
    pipelines: Mapping[str, PipelineCost] = _EMPTY
    namespaces: Mapping[str, float] = _EMPTY
    summary: CostSummary = field(default_factory=CostSummary)
    trend: tuple[CostTrendPoint, ...] = ()

    def for_run(self, namespace: str, name: str) -> CostRecord | None:
        return self.records.get(f"{namespace}/{name}")

    def aggregate(
        self,
        namespace: str | None = None,
        since: float | None = None,
        until: float | None = None,
    ) -> CostSummary:
        """Sum records matching a namespace and a run start-time range.

        Args:
            namespace: Only include runs in this namespace.
            since: Only include runs that started at or after this timestamp.
            until: Only include runs that started before this timestamp.
        """
        return summarize_costs(
            record
            for record in self.records.values()
            if (namespace is None or record.namespace == namespace)
            and (since is None or record.started_at >= since)
            and (until is None or record.started_at < until)
        )


@dataclass(frozen=True)
class TraceSnapshot:
    """All current traces, most recent first."""

    timestamp: float
    traces: tuple[Trace, ...] = ()

    def get(self, trace_id: str) -> Trace | None:
        for trace in self.traces:
            if trace.trace_id == trace_id:
                return trace
        return None


@dataclass(frozen=True)
class InsightsSnapshot:
    """Insights generated from one pair of metrics and cost snapshots."""

    timestamp: float
    insights: tuple[Insight, ...] = ()

    def filter(
        self,
        category: InsightCategory | None = None,
        severity: Severity | None = None,
        min_severity: Severity | None = None,
    ) -> list[Insight]:
        """Return insights matching a category and an exact or minimum severity."""
        return [
            insight
            for insight in self.insights
            if (category is None or insight.category == category)
            and (severity is None or insight.severity == severity)
            and (min_severity is None or insight.severity.rank >= min_severity.rank)
        ]


@dataclass(frozen=True)
class ControlPlaneSnapshot:
    """Health of the pipeline engine's own control-plane components.

    Attributes:
        timestamp: When the components were checked.
        components: Known components first, then discovered ones.
        overall: Worst component state, None when no component was found.
        version: Engine version from the controller image, "unknown" if none.
        operator_managed: Whether the engine operator's API group is served.
        namespaces: Namespaces that were searched.
    """

    timestamp: float
    components: tuple[ComponentHealth, ...] = ()
    overall: HealthState | None = None
    version: str = "unknown"
    operator_managed: bool = False
    namespaces: tuple[str, ...] = ()
