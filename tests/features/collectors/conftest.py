"""BDD step definitions for collector features.

Steps drive collectors one tick at a time against an in-memory cluster,
a static metrics source and a fake clock.
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from pipelinescope.adapters.cluster.in_memory import InMemoryClusterReader
from pipelinescope.collectors.cost import CostCollector
from pipelinescope.collectors.metrics import MetricsCollector
from pipelinescope.collectors.trace import TraceCollector
from pipelinescope.core.models import PipelineRun, RateTable, RunStatus, TaskRun
from pipelinescope.core.store import NOT_AVAILABLE, AggregationStore, ViewKind
from tests.factories import FakeClock, StaticMetricsSource, make_run, make_task_run

HOUR = 3600.0


@dataclass
class CollectorScenarioContext:
    """Shared state between steps in a collector scenario."""

    clock: FakeClock = field(default_factory=lambda: FakeClock(1_700_000_000.0))
    reader: InMemoryClusterReader = field(default_factory=InMemoryClusterReader)
    metrics_source: StaticMetricsSource = field(default_factory=StaticMetricsSource)
    rates: RateTable = field(default_factory=lambda: RateTable(0.05, 0.01, 0.001))
    runs: list[PipelineRun] = field(default_factory=list)
    task_runs: list[TaskRun] = field(default_factory=list)
    collectors: dict[str, Any] = field(default_factory=dict)
    first_published: dict[ViewKind, Any] = field(default_factory=dict)
    store: AggregationStore = field(init=False)

    def __post_init__(self) -> None:
        self.store = AggregationStore(self.clock)

    def sync_cluster(self) -> None:
        self.reader.set_pipeline_runs(self.runs)
        self.reader.set_task_runs(self.task_runs)

    def collector(self, name: str) -> Any:
        if name not in self.collectors:
            if name == "cost":
                built: Any = CostCollector(self.store, self.reader, self.rates, clock=self.clock)
            elif name == "trace":
                built = TraceCollector(self.store, self.reader, clock=self.clock)
            else:
                built = MetricsCollector(self.store, self.metrics_source, clock=self.clock)
            self.collectors[name] = built
        return self.collectors[name]


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


@pytest.fixture
def ctx() -> CollectorScenarioContext:
    """Fresh scenario context for each test."""
    return CollectorScenarioContext()


# === Cluster state ===


@given(
    parsers.parse(
        "the rates are {cpu:g} per CPU hour, {memory:g} per GiB hour of memory "
        "and {storage:g} per GiB hour of storage"
    )
)
def step_rates(ctx: CollectorScenarioContext, cpu: float, memory: float, storage: float) -> None:
    ctx.rates = RateTable(cpu, memory, storage)


@given(parsers.parse('pipeline run "{name}" in namespace "{namespace}" started {n:d} hours ago'))
def step_run_hours_ago(ctx: CollectorScenarioContext, name: str, namespace: str, n: int) -> None:
    ctx.runs.append(make_run(name=name, namespace=namespace, start=ctx.clock.now - n * HOUR))
    ctx.sync_cluster()


@given(
    parsers.parse('pipeline run "{name}" in namespace "{namespace}" started {n:d} seconds ago')
)
def step_run_seconds_ago(
    ctx: CollectorScenarioContext, name: str, namespace: str, n: int
) -> None:
    ctx.runs.append(make_run(name=name, namespace=namespace, start=ctx.clock.now - n))
    ctx.sync_cluster()


def _add_task_run(ctx: CollectorScenarioContext, name: str, **kwargs: Any) -> None:
    run = ctx.runs[-1]
    ctx.task_runs.append(
        make_task_run(name, run=run.name, namespace=run.namespace, **kwargs)
    )
    ctx.sync_cluster()


@given(parsers.parse('its task run "{name}" requests {cpu:g} CPU'))
def step_task_requests(ctx: CollectorScenarioContext, name: str, cpu: float) -> None:
    _add_task_run(ctx, name, start=ctx.runs[-1].start_time, cpu=cpu)


@given(parsers.parse('its task run "{name}" ran from second {start:d} to second {end:d}'))
def step_task_finished(ctx: CollectorScenarioContext, name: str, start: int, end: int) -> None:
    base = ctx.runs[-1].start_time
    _add_task_run(ctx, name, start=base + start, end=base + end)


@given(parsers.parse('its task run "{name}" started at second {start:d} and is still running'))
def step_task_running(ctx: CollectorScenarioContext, name: str, start: int) -> None:
    _add_task_run(ctx, name, start=ctx.runs[-1].start_time + start)


@given(parsers.parse("the run finished {n:d} hour after it started"))
def step_run_finished(ctx: CollectorScenarioContext, n: int) -> None:
    run = ctx.runs[-1]
    end = run.start_time + n * HOUR
    ctx.runs[-1] = dataclasses.replace(run, status=RunStatus.SUCCEEDED, end_time=end)
    ctx.task_runs = [
        dataclasses.replace(tr, status=RunStatus.SUCCEEDED, end_time=end)
        if tr.pipeline_run == run.name
        else tr
        for tr in ctx.task_runs
    ]
    ctx.sync_cluster()


@given("the metrics endpoint returns an empty body")
def step_empty_body(ctx: CollectorScenarioContext) -> None:
    ctx.metrics_source.body = ""


@given(parsers.parse("the metrics endpoint reports {n:d} running pipeline runs"))
def step_running_pipelines(ctx: CollectorScenarioContext, n: int) -> None:
    ctx.metrics_source.body = f"tekton_pipelines_controller_running_pipelineruns {n}\n"


# === Actions ===


@when(parsers.parse("the {name} collector ticks"))
def step_tick(ctx: CollectorScenarioContext, name: str) -> None:
    collector = ctx.collector(name)
    run_async(collector.tick())
    entry = ctx.store.read(collector.kind)
    if entry:
        ctx.first_published.setdefault(collector.kind, entry)


@when(parsers.parse("{n:d} seconds pass"))
def step_seconds_pass(ctx: CollectorScenarioContext, n: int) -> None:
    ctx.clock.advance(n)


@when(parsers.parse("{n:d} hours pass"))
def step_hours_pass(ctx: CollectorScenarioContext, n: int) -> None:
    ctx.clock.advance(n * HOUR)


@when("the cluster becomes unreachable")
def step_cluster_down(ctx: CollectorScenarioContext) -> None:
    ctx.reader.unavailable = True


@when("the metrics endpoint becomes unreachable")
def step_metrics_down(ctx: CollectorScenarioContext) -> None:
    ctx.metrics_source.failing = True


# === Cost assertions ===


def _record(ctx: CollectorScenarioContext, key: str) -> Any:
    namespace, name = key.split("/", 1)
    record = ctx.collector("cost").cost_for_run(namespace, name)
    assert record is not None, f"no cost record for {key}"
    return record


@then(parsers.parse('the cost of "{key}" is {amount:g} dollars'))
def step_cost_is(ctx: CollectorScenarioContext, key: str, amount: float) -> None:
    assert _record(ctx, key).total_cost == pytest.approx(amount)


@then(parsers.parse('the cost of "{key}" is the sum of its components'))
def step_cost_is_sum(ctx: CollectorScenarioContext, key: str) -> None:
    record = _record(ctx, key)
    assert record.total_cost == record.cpu_cost + record.memory_cost + record.storage_cost


@then(parsers.parse('the cost record of "{key}" is frozen'))
def step_cost_frozen(ctx: CollectorScenarioContext, key: str) -> None:
    assert _record(ctx, key).frozen


# === Trace assertions ===


def _trace(ctx: CollectorScenarioContext, trace_id: str) -> Any:
    trace = ctx.collector("trace").get_trace(trace_id)
    assert trace is not None, f"no trace {trace_id}"
    return trace


def _span(ctx: CollectorScenarioContext, span_id: str) -> Any:
    for trace in ctx.store.snapshot(ViewKind.TRACE).traces:
        span = trace.span(span_id)
        if span is not None:
            return span
    raise AssertionError(f"no span {span_id}")


@then(parsers.parse('trace "{trace_id}" has spans "{span_ids}"'))
def step_trace_spans(ctx: CollectorScenarioContext, trace_id: str, span_ids: str) -> None:
    expected = [s.strip() for s in span_ids.split(",")]
    assert [s.span_id for s in _trace(ctx, trace_id).spans] == expected


@then(parsers.parse('span "{span_id}" depends on "{parent}"'))
def step_span_depends(ctx: CollectorScenarioContext, span_id: str, parent: str) -> None:
    assert _span(ctx, span_id).depends_on == (parent,)


@then(parsers.parse('span "{span_id}" lasts {n:d} seconds'))
def step_span_duration(ctx: CollectorScenarioContext, span_id: str, n: int) -> None:
    assert _span(ctx, span_id).duration == pytest.approx(n)


@then(parsers.parse('trace "{trace_id}" lasts {n:d} seconds'))
def step_trace_duration(ctx: CollectorScenarioContext, trace_id: str, n: int) -> None:
    assert _trace(ctx, trace_id).duration == pytest.approx(n)


# === View assertions ===


@then(parsers.parse("the {view} view is still the one published first"))
def step_view_unchanged(ctx: CollectorScenarioContext, view: str) -> None:
    kind = ViewKind(view)
    assert ctx.store.read(kind) is ctx.first_published[kind]


@then(parsers.parse("the {view} view is not available"))
def step_view_unavailable(ctx: CollectorScenarioContext, view: str) -> None:
    assert ctx.store.read(ViewKind(view)) is NOT_AVAILABLE


@then(parsers.parse("the metrics view shows {n:d} running pipeline runs"))
def step_metrics_running(ctx: CollectorScenarioContext, n: int) -> None:
    assert ctx.store.snapshot(ViewKind.METRICS).running_pipelines == n
