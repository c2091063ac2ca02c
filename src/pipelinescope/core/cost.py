"""Cost accounting for pipeline runs.

Usage is accounted in windows: each collector tick covers the interval
between a record's last accounted time and now (or the run's end). The
window start is the last successful accounting time, so a missed tick is
folded into the next window instead of being lost or counted twice.
"""

import dataclasses
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from pipelinescope.core.errors import ConfigError
from pipelinescope.core.models import (
    GIB,
    SECONDS_PER_HOUR,
    CostRecord,
    CostTrendPoint,
    PipelineRun,
    RateTable,
    ResourceAmounts,
    TaskRun,
)
from pipelinescope.core.snapshots import (
    CostSnapshot,
    PipelineCost,
    summarize_costs,
)

# Estimate used when a run exposes no requests and no observed usage.
DEFAULT_RUN_ESTIMATE = ResourceAmounts(
    cpu_cores=1.0,
    memory_bytes=2.0 * GIB,
    storage_bytes=10.0 * GIB,
)


@dataclass(frozen=True)
class UsageDelta:
    """Resource consumption over one accounting window."""

    cpu_seconds: float = 0.0
    memory_byte_seconds: float = 0.0
    storage_byte_seconds: float = 0.0
    requested_cpu_seconds: float = 0.0
    requested_memory_byte_seconds: float = 0.0
    observed: bool = False


def validate_rates(rates: RateTable) -> RateTable:
    """Return rates unchanged, or raise ConfigError for negative or non-finite values."""
    invalid = rates.invalid_fields()
    if invalid:
        raise ConfigError(f"Invalid cost rates: {', '.join(invalid)} must be finite and >= 0")
    return rates


def _overlap(start: float, end: float, window_start: float, window_end: float) -> float:
    return max(0.0, min(end, window_end) - max(start, window_start))


def usage_between(
    run: PipelineRun,
    task_runs: Sequence[TaskRun],
    window_start: float,
    window_end: float,
    estimate: ResourceAmounts = DEFAULT_RUN_ESTIMATE,
) -> UsageDelta:
    """Resource consumption of a run within [window_start, window_end].

    Each task run contributes its observed usage (or, failing that, its
    requests) for the part of its execution that overlaps the window. A run
    whose task runs carry no resource data at all is charged the default
    estimate over the run's own execution window.
    """
    if window_end <= window_start:
        return UsageDelta()

    cpu = memory = storage = 0.0
    requested_cpu = requested_memory = 0.0
    observed = False
    has_data = False

    for task_run in task_runs:
        if task_run.start_time is None:
            continue
        amounts = task_run.usage or task_run.requests
        if amounts is None:
            continue
        has_data = True
        end = task_run.end_time if task_run.end_time is not None else window_end
        seconds = _overlap(task_run.start_time, end, window_start, window_end)
        if seconds <= 0:
            continue
        cpu += max(amounts.cpu_cores, 0.0) * seconds
        memory += max(amounts.memory_bytes, 0.0) * seconds
        storage += max(amounts.storage_bytes, 0.0) * seconds
        if task_run.usage is not None:
            observed = True
        if task_run.requests is not None:
            requested_cpu += max(task_run.requests.cpu_cores, 0.0) * seconds
            requested_memory += max(task_run.requests.memory_bytes, 0.0) * seconds

    if not has_data:
        if run.start_time is None:
            return UsageDelta()
        end = run.end_time if run.end_time is not None else window_end
        seconds = _overlap(run.start_time, end, window_start, window_end)
        return UsageDelta(
            cpu_seconds=estimate.cpu_cores * seconds,
            memory_byte_seconds=estimate.memory_bytes * seconds,
            storage_byte_seconds=estimate.storage_bytes * seconds,
            requested_cpu_seconds=estimate.cpu_cores * seconds,
            requested_memory_byte_seconds=estimate.memory_bytes * seconds,
        )

    return UsageDelta(
        cpu_seconds=cpu,
        memory_byte_seconds=memory,
        storage_byte_seconds=storage,
        requested_cpu_seconds=requested_cpu,
        requested_memory_byte_seconds=requested_memory,
        observed=observed,
    )


def new_record(run: PipelineRun, rates: RateTable) -> CostRecord:
    """Create an empty cost record for a run that has started."""
    started_at = run.start_time if run.start_time is not None else run.created_at
    return CostRecord(
        namespace=run.namespace,
        name=run.name,
        pipeline=run.pipeline,
        status=run.status,
        rates=rates,
        started_at=started_at,
        last_accounted_at=started_at,
    )


def apply_usage(
    record: CostRecord,
    usage: UsageDelta,
    accounted_until: float,
    run: PipelineRun,
) -> CostRecord:
    """Add one window's usage and its cost to a record.

    Costs use the rate table captured in the record. A frozen record is
    returned unchanged.
    """
    if record.frozen:
        return record
    rates = record.rates
    cpu_hours = usage.cpu_seconds / SECONDS_PER_HOUR
    memory_gb_hours = usage.memory_byte_seconds / GIB / SECONDS_PER_HOUR
    storage_gb_hours = usage.storage_byte_seconds / GIB / SECONDS_PER_HOUR
    return dataclasses.replace(
        record,
        pipeline=run.pipeline,
        status=run.status,
        last_accounted_at=max(record.last_accounted_at, accounted_until),
        cpu_seconds=record.cpu_seconds + usage.cpu_seconds,
        memory_byte_seconds=record.memory_byte_seconds + usage.memory_byte_seconds,
        storage_byte_seconds=record.storage_byte_seconds + usage.storage_byte_seconds,
        requested_cpu_seconds=record.requested_cpu_seconds + usage.requested_cpu_seconds,
        requested_memory_byte_seconds=(
            record.requested_memory_byte_seconds + usage.requested_memory_byte_seconds
        ),
        observed=record.observed or usage.observed,
        cpu_cost=record.cpu_cost + cpu_hours * rates.cpu_per_hour,
        memory_cost=record.memory_cost + memory_gb_hours * rates.memory_per_gb_hour,
        storage_cost=record.storage_cost + storage_gb_hours * rates.storage_per_gb_hour,
    )


def freeze(record: CostRecord) -> CostRecord:
    return dataclasses.replace(record, frozen=True)


def pipeline_costs(records: Iterable[CostRecord]) -> dict[str, PipelineCost]:
    """Group records by namespace/pipeline and sum each group."""
    groups: dict[tuple[str, str], list[CostRecord]] = defaultdict(list)
    for record in records:
        groups[(record.namespace, record.pipeline)].append(record)
    result: dict[str, PipelineCost] = {}
    for (namespace, pipeline), members in groups.items():
        cost = PipelineCost(pipeline=pipeline, namespace=namespace, summary=summarize_costs(members))
        result[cost.key] = cost
    return result


def namespace_costs(records: Iterable[CostRecord]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for record in records:
        totals[record.namespace] += record.total_cost
    return dict(totals)


def build_cost_snapshot(
    records: Mapping[str, CostRecord],
    timestamp: float,
    trend: Sequence[CostTrendPoint] = (),
) -> CostSnapshot:
    """Build an immutable cost snapshot from the current records."""
    frozen_records = dict(records)
    return CostSnapshot(
        timestamp=timestamp,
        records=MappingProxyType(frozen_records),
        pipelines=MappingProxyType(pipeline_costs(frozen_records.values())),
        namespaces=MappingProxyType(namespace_costs(frozen_records.values())),
        summary=summarize_costs(frozen_records.values()),
        trend=tuple(trend),
    )


def trend_point(snapshot: CostSnapshot) -> CostTrendPoint:
    summary = snapshot.summary
    return CostTrendPoint(
        timestamp=snapshot.timestamp,
        total_cost=summary.total_cost,
        cpu_cost=summary.cpu_cost,
        memory_cost=summary.memory_cost,
        storage_cost=summary.storage_cost,
    )
