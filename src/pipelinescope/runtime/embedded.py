"""Embedded runtime that wires collectors from configuration and runs them."""

import asyncio
import logging
import time
from collections.abc import Callable

from pipelinescope.adapters.cluster.kubernetes import KubernetesClusterReader
from pipelinescope.adapters.http import HttpMetricsSource
from pipelinescope.adapters.storage.ring_buffer import RingBufferCostTrendStorage
from pipelinescope.adapters.storage.sqlite_trends import SQLiteCostTrendStorage
from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.collectors.controlplane import ControlPlaneCollector
from pipelinescope.collectors.cost import CostCollector
from pipelinescope.collectors.insights import InsightsEngine
from pipelinescope.collectors.metrics import MetricsCollector
from pipelinescope.collectors.trace import TraceCollector
from pipelinescope.core.config import DashboardConfig
from pipelinescope.core.errors import ConfigError
from pipelinescope.core.ports import (
    ClusterStateReaderPort,
    CostTrendStoragePort,
    MetricsSourcePort,
)
from pipelinescope.core.snapshots import MetricsSnapshot
from pipelinescope.core.store import AggregationStore

logger = logging.getLogger(__name__)


class DashboardRuntime:
    """Builds the collectors a config asks for and manages their lifecycle.

    Adapters not passed in are created from the config: a Kubernetes cluster
    reader, an HTTP metrics source and either SQLite or ring buffer trend
    storage. A collector whose start() raises ConfigError is logged once and
    left out; the others run regardless.

    Example:
        ```python
        runtime = DashboardRuntime(DashboardConfig.from_env())
        await runtime.start()
        ...
        await runtime.stop()
        ```
    """

    def __init__(
        self,
        config: DashboardConfig,
        store: AggregationStore | None = None,
        reader: ClusterStateReaderPort | None = None,
        metrics_source: MetricsSourcePort | None = None,
        trend_storage: CostTrendStoragePort | None = None,
        kubeconfig: str | None = None,
        master: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store or AggregationStore(clock)
        self._owned_source: HttpMetricsSource | None = None
        self._owned_trends: SQLiteCostTrendStorage | None = None

        if reader is None:
            reader = KubernetesClusterReader(kubeconfig=kubeconfig, master=master)
        if metrics_source is None:
            metrics_source = self._owned_source = HttpMetricsSource(config.metrics_endpoint)
        if trend_storage is None:
            if config.cost_history_db:
                trend_storage = self._owned_trends = SQLiteCostTrendStorage(
                    config.cost_history_db
                )
            else:
                trend_storage = RingBufferCostTrendStorage(config.trend_max_points)
        self.trend_storage = trend_storage

        collectors: list[LoopingCollector] = [
            MetricsCollector(
                self.store,
                metrics_source,
                endpoint=config.metrics_endpoint,
                interval_seconds=config.metrics_interval,
                retention_seconds=config.metrics_retention,
                clock=clock,
            ),
            TraceCollector(
                self.store,
                reader,
                interval_seconds=config.trace_interval,
                run_retention_seconds=config.run_retention,
                clock=clock,
            ),
            ControlPlaneCollector(
                self.store,
                reader,
                namespace=config.control_plane_namespace,
                operator_namespaces=config.operator_namespaces,
                interval_seconds=config.control_plane_interval,
                clock=clock,
            ),
        ]
        if config.enable_cost_tracking:
            collectors.append(
                CostCollector(
                    self.store,
                    reader,
                    config.rates,
                    trend_storage=trend_storage,
                    interval_seconds=config.cost_interval,
                    run_retention_seconds=config.run_retention,
                    cost_lookback_seconds=config.cost_lookback,
                    trend_retention_seconds=config.trend_retention,
                    trend_points=config.trend_max_points,
                    clock=clock,
                )
            )
        if config.enable_insights:
            collectors.append(
                InsightsEngine(
                    self.store,
                    thresholds=config.insight_thresholds,
                    interval_seconds=config.insights_interval,
                    clock=clock,
                )
            )
        self.collectors: dict[str, LoopingCollector] = {c.name: c for c in collectors}
        self.disabled: dict[str, str] = {}

    def metrics_history(self, since: float = 0.0) -> list[MetricsSnapshot]:
        """Snapshots the metrics collector has published since a timestamp."""
        collector = self.collectors.get("metrics")
        if not isinstance(collector, MetricsCollector):
            return []
        return collector.history(since)

    @property
    def running(self) -> list[str]:
        return [name for name, collector in self.collectors.items() if collector.running]

    async def start(self) -> None:
        """Start every collector, skipping those with invalid configuration."""
        for name, collector in self.collectors.items():
            try:
                await collector.start()
            except ConfigError as exc:
                self.disabled[name] = str(exc)
                logger.error(
                    "Collector disabled by invalid configuration",
                    extra={"collector": name, "error": str(exc)},
                )
                continue
            logger.info("Collector started", extra={"collector": name})

    async def stop(self) -> None:
        """Stop all collectors concurrently, then release owned adapters."""
        grace = self.config.shutdown_grace_seconds
        await asyncio.gather(*(c.stop(grace) for c in self.collectors.values()))
        if self._owned_source is not None:
            await self._owned_source.aclose()
        if self._owned_trends is not None:
            await self._owned_trends.close()
        logger.info("Dashboard runtime stopped")
