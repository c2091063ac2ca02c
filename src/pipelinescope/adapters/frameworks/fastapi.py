"""FastAPI adapter exposing the aggregation store as a read-only JSON API."""

from collections.abc import Callable, Sequence
from typing import Any

from fastapi import APIRouter, HTTPException, Response

from pipelinescope.adapters.frameworks.query_params import (
    parse_category_param,
    parse_level_param,
    parse_severity_param,
    parse_timestamp_param,
)
from pipelinescope.core.encoding.jsonable import to_jsonable
from pipelinescope.core.encoding.ndjson import encode_logs
from pipelinescope.core.ports import CostTrendStoragePort, LogStoragePort
from pipelinescope.core.snapshots import (
    ControlPlaneSnapshot,
    CostSnapshot,
    InsightsSnapshot,
    MetricsSnapshot,
    TraceSnapshot,
)
from pipelinescope.core.store import AggregationStore, Published, ViewKind


def envelope(store: AggregationStore, kind: ViewKind, render: Callable[[Any], Any]) -> dict:
    """Wrap the latest snapshot of a kind in the {available, published_at, data} envelope."""
    entry = store.read(kind)
    if not isinstance(entry, Published):
        return {"available": False, "published_at": None, "data": None}
    return {
        "available": True,
        "published_at": entry.published_at,
        "data": to_jsonable(render(entry.snapshot)),
    }


def _metrics_overview(snapshot: MetricsSnapshot) -> dict[str, Any]:
    return {
        "timestamp": snapshot.timestamp,
        "running_pipelines": snapshot.running_pipelines,
        "running_tasks": snapshot.running_tasks,
        "total_pipelines": snapshot.total_pipelines,
        "successful_pipelines": snapshot.successful_pipelines,
        "failed_pipelines": snapshot.failed_pipelines,
        "total_tasks": snapshot.total_tasks,
        "success_rate": snapshot.success_rate,
        "average_pipeline_duration": snapshot.average_pipeline_duration,
        "average_task_duration": snapshot.average_task_duration,
    }


def _cost_breakdown(snapshot: CostSnapshot) -> dict[str, Any]:
    return {
        "timestamp": snapshot.timestamp,
        "summary": snapshot.summary,
        "average_cost_per_run": snapshot.summary.average_cost_per_run,
        "pipelines": sorted(
            snapshot.pipelines.values(), key=lambda p: p.summary.total_cost, reverse=True
        ),
        "namespaces": snapshot.namespaces,
    }


def create_dashboard_router(
    store: AggregationStore,
    log_storage: LogStoragePort | None = None,
    trend_storage: CostTrendStoragePort | None = None,
    metrics_history: Callable[[float], Sequence[MetricsSnapshot]] | None = None,
) -> APIRouter:
    """Create a FastAPI router serving every dashboard view.

    Handlers only read committed snapshots; they never trigger collection.
    A view that has not been published yet is returned with
    "available": false.

    Args:
        store: Aggregation store the collectors publish into.
        log_storage: Captured logs served at /logs as NDJSON.
        trend_storage: Cost trend history for /api/v1/cost/trend. When
            omitted the trend held in the cost snapshot is served.
        metrics_history: Returns published metrics snapshots since a
            timestamp, served at /api/v1/metrics/history.

    Returns:
        APIRouter with /health, /logs and /api/v1/* endpoints configured.
    """
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness plus the publish time of each view."""
        views: dict[str, float | None] = {}
        for kind in ViewKind:
            entry = store.read(kind)
            views[kind.value] = entry.published_at if isinstance(entry, Published) else None
        return {"status": "ok", "views": views}

    @router.get("/api/v1/metrics")
    async def metrics_overview() -> dict:
        return envelope(store, ViewKind.METRICS, _metrics_overview)

    @router.get("/api/v1/metrics/pipelines")
    async def pipeline_metrics() -> dict:
        return envelope(
            store,
            ViewKind.METRICS,
            lambda s: sorted(s.pipeline_metrics.values(), key=lambda m: m.key),
        )

    @router.get("/api/v1/metrics/tasks")
    async def task_metrics() -> dict:
        return envelope(
            store,
            ViewKind.METRICS,
            lambda s: sorted(s.task_metrics.values(), key=lambda m: m.key),
        )

    @router.get("/api/v1/metrics/history")
    async def metrics_history_view(since: str | None = None) -> dict:
        """Overview of every retained metrics snapshot with timestamp >= since."""
        if metrics_history is None:
            return {"available": False, "published_at": None, "data": None}
        snapshots = metrics_history(parse_timestamp_param(since) or 0.0)
        return {
            "available": True,
            "published_at": snapshots[-1].timestamp if snapshots else None,
            "data": to_jsonable([_metrics_overview(s) for s in snapshots]),
        }

    @router.get("/api/v1/cost")
    async def cost_breakdown() -> dict:
        return envelope(store, ViewKind.COST, _cost_breakdown)

    @router.get("/api/v1/cost/runs/{namespace}/{name}")
    async def cost_for_run(namespace: str, name: str) -> dict:
        snapshot: CostSnapshot | None = store.snapshot(ViewKind.COST)
        if snapshot is not None and snapshot.for_run(namespace, name) is None:
            raise HTTPException(status_code=404, detail=f"No cost record for {namespace}/{name}")
        return envelope(store, ViewKind.COST, lambda s: s.for_run(namespace, name))

    @router.get("/api/v1/cost/aggregate")
    async def cost_aggregate(
        namespace: str | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> dict:
        """Sum cost over runs in a namespace and/or started within [since, until)."""
        start = parse_timestamp_param(since, default=None)
        end = parse_timestamp_param(until, default=None)
        return envelope(
            store,
            ViewKind.COST,
            lambda s: s.aggregate(namespace=namespace or None, since=start, until=end),
        )

    @router.get("/api/v1/cost/trend")
    async def cost_trend(since: str | None = None) -> dict:
        start = parse_timestamp_param(since) or 0.0
        if trend_storage is not None:
            points = [p async for p in trend_storage.read(since=start)]
            return {
                "available": True,
                "published_at": points[-1].timestamp if points else None,
                "data": to_jsonable(points),
            }
        return envelope(
            store,
            ViewKind.COST,
            lambda s: [p for p in s.trend if p.timestamp > start],
        )

    @router.get("/api/v1/traces")
    async def traces(limit: int = 100) -> dict:
        """Traces, most recent first."""
        count = max(limit, 0)
        return envelope(store, ViewKind.TRACE, lambda s: list(s.traces[:count]))

    @router.get("/api/v1/traces/{trace_id}")
    async def trace(trace_id: str) -> dict:
        snapshot: TraceSnapshot | None = store.snapshot(ViewKind.TRACE)
        if snapshot is not None and snapshot.get(trace_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown trace {trace_id}")
        return envelope(store, ViewKind.TRACE, lambda s: s.get(trace_id))

    @router.get("/api/v1/insights")
    async def insights(
        category: str | None = None,
        severity: str | None = None,
        min_severity: str | None = None,
    ) -> dict:
        """Insights filtered by category and exact or minimum severity."""
        wanted_category = parse_category_param(category)
        wanted_severity = parse_severity_param(severity)
        floor = parse_severity_param(min_severity)

        def render(snapshot: InsightsSnapshot) -> list:
            return snapshot.filter(wanted_category, wanted_severity, floor)

        return envelope(store, ViewKind.INSIGHTS, render)

    @router.get("/api/v1/controlplane")
    async def control_plane() -> dict:
        def render(snapshot: ControlPlaneSnapshot) -> dict[str, Any]:
            return {
                "timestamp": snapshot.timestamp,
                "overall": snapshot.overall,
                "version": snapshot.version,
                "operator_managed": snapshot.operator_managed,
                "namespaces": snapshot.namespaces,
                "components": snapshot.components,
            }

        return envelope(store, ViewKind.CONTROL_PLANE, render)

    if log_storage is not None:

        @router.get("/logs")
        async def get_logs(since: str | None = None, level: str | None = None) -> Response:
            """Return captured logs in NDJSON format.

            Args:
                since: Unix timestamp. Returns entries with timestamp > since.
                level: Only return entries of this level.
            """
            entries = [
                e
                async for e in log_storage.read(
                    since=parse_timestamp_param(since) or 0.0, level=parse_level_param(level)
                )
            ]
            return Response(content=encode_logs(entries), media_type="application/x-ndjson")

    return router
