"""Reconstruction of execution traces from pipeline and task runs.

Everything here is a pure function of its inputs: the same runs and the
same `now` always give the same trace, with spans in the same order.
"""

import dataclasses
import logging
from collections.abc import Iterable, Sequence

from pipelinescope.core.models import PipelineRun, Span, TaskRun, Trace

logger = logging.getLogger(__name__)

DECLARED = "declared"
OBSERVED = "observed"


def trace_id_for(run: PipelineRun) -> str:
    """pr-<namespace>.<name>. Namespaces cannot contain dots."""
    return f"pr-{run.namespace}.{run.name}"


def span_id_for(task_run: TaskRun) -> str:
    return f"tr-{task_run.name}"


def build_span(
    task_run: TaskRun,
    trace_id: str,
    now: float,
    window: tuple[float, float] | None = None,
) -> Span | None:
    """Build the span of one task run.

    Args:
        task_run: The task run.
        trace_id: Id of the owning trace.
        now: Current time, used for the duration of running task runs.
        window: (start, end) of a terminal trace; the span is clamped into it.

    Returns:
        The span, or None for a task run that has not started or whose end
        precedes its start.
    """
    start = task_run.start_time
    end = task_run.end_time
    if start is None:
        return None
    if end is not None and end < start:
        logger.debug(
            "Skipping task run with end before start",
            extra={"task_run": task_run.name, "namespace": task_run.namespace},
        )
        return None

    if window is not None:
        window_start, window_end = window
        start = min(max(start, window_start), window_end)
        end = min(max(end if end is not None else window_end, start), window_end)

    duration = (end - start) if end is not None else max(0.0, now - start)
    tags = {"namespace": task_run.namespace, "task_run": task_run.name}
    if task_run.pipeline_task:
        tags["pipeline_task"] = task_run.pipeline_task
    return Span(
        span_id=span_id_for(task_run),
        trace_id=trace_id,
        name=task_run.task,
        task_run=task_run.name,
        status=task_run.status,
        start_time=start,
        end_time=end,
        duration=duration,
        tags=tags,
    )


def _declared_edges(
    spans: Sequence[Span],
    pipeline_tasks: dict[str, str],
    dependencies: dict[str, tuple[str, ...]],
) -> dict[str, tuple[str, ...]]:
    """Map span id -> parent span ids from the pipeline's runAfter declarations."""
    span_by_task = {task: span_id for span_id, task in pipeline_tasks.items()}
    edges: dict[str, tuple[str, ...]] = {}
    for span in spans:
        task = pipeline_tasks.get(span.span_id)
        parents = dependencies.get(task, ()) if task else ()
        edges[span.span_id] = tuple(
            sorted(span_by_task[parent] for parent in parents if parent in span_by_task)
        )
    return edges


def _observed_edges(spans: Sequence[Span]) -> dict[str, tuple[str, ...]]:
    """Map span id -> the spans that ended latest at or before its start."""
    edges: dict[str, tuple[str, ...]] = {}
    for span in spans:
        finished = [
            other
            for other in spans
            if other.span_id != span.span_id
            and other.end_time is not None
            and other.end_time <= span.start_time
        ]
        if not finished:
            edges[span.span_id] = ()
            continue
        latest = max(other.end_time for other in finished)  # type: ignore[type-var]
        edges[span.span_id] = tuple(
            sorted(other.span_id for other in finished if other.end_time == latest)
        )
    return edges


def infer_dependencies(
    spans: Sequence[Span],
    pipeline_tasks: dict[str, str],
    declared: dict[str, tuple[str, ...]],
) -> tuple[dict[str, tuple[str, ...]], str]:
    """Choose the dependency edges for a set of spans.

    Declared runAfter edges are authoritative whenever the pipeline declares
    any and the spans can be matched to pipeline tasks. Otherwise edges are
    inferred from observed timing.

    Returns:
        (edges, source) where source is "declared" or "observed".
    """
    if declared and pipeline_tasks:
        return _declared_edges(spans, pipeline_tasks, declared), DECLARED
    return _observed_edges(spans), OBSERVED


def sort_spans(spans: Iterable[Span]) -> tuple[Span, ...]:
    """Order spans by start time, ties broken by span id."""
    return tuple(sorted(spans, key=lambda s: (s.start_time, s.span_id)))


def build_trace(run: PipelineRun, task_runs: Iterable[TaskRun], now: float) -> Trace:
    """Reconstruct the trace of one pipeline run.

    Args:
        run: The pipeline run.
        task_runs: Task runs owned by the pipeline run.
        now: Current time.

    Returns:
        Trace with ordered spans and dependency edges. A terminal trace's
        spans are clamped into [start, end] and its duration is end - start.
        A running trace's duration reaches the latest span end.
    """
    trace_id = trace_id_for(run)
    start = run.start_time if run.start_time is not None else run.created_at
    owned = [
        tr for tr in task_runs if tr.pipeline_run == run.name and tr.namespace == run.namespace
    ]

    window: tuple[float, float] | None = None
    end: float | None = None
    if run.status.is_terminal:
        end = run.end_time
        if end is None:
            # Terminal without a completion time: close at the last span end.
            ends = [tr.end_time for tr in owned if tr.end_time is not None]
            end = max([start, *ends])
        end = max(end, start)
        window = (start, end)

    spans = [
        span
        for span in (build_span(tr, trace_id, now, window) for tr in owned)
        if span is not None
    ]
    pipeline_tasks = {
        span_id_for(tr): tr.pipeline_task for tr in owned if tr.pipeline_task is not None
    }
    edges, source = infer_dependencies(spans, pipeline_tasks, dict(run.task_dependencies))
    ordered = sort_spans(
        dataclasses.replace(span, depends_on=edges.get(span.span_id, ())) for span in spans
    )

    if end is not None:
        duration = end - start
    elif ordered:
        duration = max(0.0, max(span.effective_end for span in ordered) - start)
    else:
        duration = 0.0

    return Trace(
        trace_id=trace_id,
        pipeline_run=run.name,
        pipeline=run.pipeline,
        namespace=run.namespace,
        status=run.status,
        start_time=start,
        end_time=end,
        duration=duration,
        spans=ordered,
        dependency_source=source,
    )


def sort_traces(traces: Iterable[Trace]) -> tuple[Trace, ...]:
    """Most recent first by start time, ties broken by trace id."""
    return tuple(sorted(traces, key=lambda t: (-t.start_time, t.trace_id)))
