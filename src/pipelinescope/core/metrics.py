"""Rolling metric series and their aggregation into a metrics snapshot."""

from collections import defaultdict, deque
from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from dataclasses import dataclass, field
from itertools import pairwise
from types import MappingProxyType

from pipelinescope.core.models import Sample, SeriesKey
from pipelinescope.core.snapshots import MetricsSnapshot, RunMetrics

RUNNING_PIPELINERUNS = "tekton_pipelines_controller_running_pipelineruns"
RUNNING_TASKRUNS = "tekton_pipelines_controller_running_taskruns"
PIPELINERUN_DURATION = "tekton_pipelines_controller_pipelinerun_duration_seconds"
TASKRUN_DURATION = "tekton_pipelines_controller_pipelinerun_taskrun_duration_seconds"

DEFAULT_MAX_SAMPLES = 5760


class MetricSeries:
    """Samples for one series key, bounded by age and by count.

    Samples older than the retention window (relative to the newest sample)
    are evicted on every insert. The deque bound caps memory for series that
    are scraped more often than expected.

    Args:
        key: Series identity.
        retention_seconds: Maximum age of retained samples.
        max_samples: Maximum number of retained samples.
    """

    def __init__(
        self,
        key: SeriesKey,
        retention_seconds: float,
        max_samples: int = DEFAULT_MAX_SAMPLES,
    ) -> None:
        self.key = key
        self._retention = retention_seconds
        self._samples: deque[Sample] = deque(maxlen=max_samples)

    def append(self, sample: Sample) -> None:
        """Insert a sample and evict samples that fell out of the window."""
        self._samples.append(sample)
        cutoff = sample.timestamp - self._retention
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()

    def newest(self) -> Sample | None:
        return self._samples[-1] if self._samples else None

    def is_expired(self, now: float) -> bool:
        newest = self.newest()
        return newest is None or newest.timestamp < now - self._retention

    def snapshot(self) -> tuple[Sample, ...]:
        return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)


@dataclass
class _DurationAccumulator:
    total: float = 0.0
    successful: float = 0.0
    failed: float = 0.0
    duration_sum: float = 0.0
    # timestamp -> [runs completed in interval, duration sum of those runs]
    intervals: dict[float, list[float]] = field(
        default_factory=lambda: defaultdict(lambda: [0.0, 0.0])
    )


def percentile(values: Sequence[float], q: float) -> float:
    """Nearest-rank percentile of values, 0.0 for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, -(-len(ordered) * q // 100))
    return ordered[min(int(rank), len(ordered)) - 1]


def _current_sum(
    series: Mapping[SeriesKey, tuple[Sample, ...]],
    name: str,
    current: Set[SeriesKey] | None,
) -> float:
    """Sum a gauge over the label sets present in the latest scrape."""
    return sum(
        samples[-1].value
        for key, samples in series.items()
        if key.name == name and samples and (current is None or key in current)
    )


def _accumulate_durations(
    series: Mapping[SeriesKey, tuple[Sample, ...]],
    family: str,
    identity_label: str,
) -> dict[tuple[str, str], _DurationAccumulator]:
    """Group a duration histogram's _count/_sum series by (namespace, name)."""
    count_name = f"{family}_count"
    sum_name = f"{family}_sum"
    groups: dict[tuple[str, str], _DurationAccumulator] = defaultdict(_DurationAccumulator)

    for key, counts in series.items():
        if key.name != count_name or not counts:
            continue
        identity = (key.label("namespace"), key.label(identity_label))
        sums = {s.timestamp: s.value for s in series.get(SeriesKey(sum_name, key.labels), ())}
        acc = groups[identity]

        latest = counts[-1].value
        acc.total += latest
        acc.duration_sum += sums.get(counts[-1].timestamp, 0.0)
        status = key.label("status")
        if status == "success":
            acc.successful += latest
        elif status == "failed":
            acc.failed += latest

        for prev, cur in pairwise(counts):
            runs = cur.value - prev.value
            if runs <= 0 or prev.timestamp not in sums or cur.timestamp not in sums:
                # No new runs, or a counter reset.
                continue
            duration = sums[cur.timestamp] - sums[prev.timestamp]
            if duration < 0:
                continue
            interval = acc.intervals[cur.timestamp]
            interval[0] += runs
            interval[1] += duration
    return groups


def _run_metrics(
    groups: dict[tuple[str, str], _DurationAccumulator],
) -> dict[str, RunMetrics]:
    result: dict[str, RunMetrics] = {}
    for (namespace, name), acc in groups.items():
        history = tuple(
            (ts, duration / runs)
            for ts, (runs, duration) in sorted(acc.intervals.items())
            if runs > 0
        )
        means = [mean for _, mean in history]
        total = int(acc.total)
        metric = RunMetrics(
            name=name,
            namespace=namespace,
            total_runs=total,
            successful_runs=int(acc.successful),
            failed_runs=int(acc.failed),
            success_rate=acc.successful / acc.total * 100 if acc.total > 0 else 0.0,
            average_duration=acc.duration_sum / acc.total if acc.total > 0 else 0.0,
            p50_duration=percentile(means, 50),
            p95_duration=percentile(means, 95),
            p99_duration=percentile(means, 99),
            last_run_time=history[-1][0] if history else 0.0,
            duration_history=history,
        )
        result[metric.key] = metric
    return result


def aggregate_metrics(
    series: Mapping[SeriesKey, tuple[Sample, ...]],
    timestamp: float,
    current: Set[SeriesKey] | None = None,
) -> MetricsSnapshot:
    """Build a metrics snapshot from the current series.

    Args:
        series: Retained samples per series key, oldest first.
        timestamp: Snapshot time.
        current: Keys present in the latest scrape. Running gauges only
            count these, so a label set that stopped being reported does
            not keep adding its last value. None counts every series.

    Returns:
        MetricsSnapshot with gauges, per-pipeline and per-task run metrics.
    """
    pipelines = _run_metrics(_accumulate_durations(series, PIPELINERUN_DURATION, "pipeline"))
    tasks = _run_metrics(_accumulate_durations(series, TASKRUN_DURATION, "task"))

    total_pipelines = sum(pm.total_runs for pm in pipelines.values())
    successful = sum(pm.successful_runs for pm in pipelines.values())
    failed = sum(pm.failed_runs for pm in pipelines.values())
    finished = successful + failed
    total_tasks = sum(tm.total_runs for tm in tasks.values())

    return MetricsSnapshot(
        timestamp=timestamp,
        running_pipelines=int(_current_sum(series, RUNNING_PIPELINERUNS, current)),
        running_tasks=int(_current_sum(series, RUNNING_TASKRUNS, current)),
        total_pipelines=total_pipelines,
        successful_pipelines=successful,
        failed_pipelines=failed,
        total_tasks=total_tasks,
        success_rate=successful / finished * 100 if finished else 0.0,
        average_pipeline_duration=_weighted_average(pipelines.values()),
        average_task_duration=_weighted_average(tasks.values()),
        pipeline_metrics=MappingProxyType(pipelines),
        task_metrics=MappingProxyType(tasks),
        series=MappingProxyType(dict(series)),
    )


def _weighted_average(metrics: Iterable[RunMetrics]) -> float:
    runs = 0
    seconds = 0.0
    for metric in metrics:
        runs += metric.total_runs
        seconds += metric.average_duration * metric.total_runs
    return seconds / runs if runs else 0.0
