"""Metrics collector: scrapes the controller's Prometheus endpoint."""

import logging
import time
from collections import deque
from collections.abc import Callable

from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.core.config import validate_endpoint
from pipelinescope.core.encoding.prometheus import parse_exposition
from pipelinescope.core.errors import ConfigError, UpstreamUnavailableError
from pipelinescope.core.metrics import DEFAULT_MAX_SAMPLES, MetricSeries, aggregate_metrics
from pipelinescope.core.models import SeriesKey
from pipelinescope.core.ports import MetricsSourcePort
from pipelinescope.core.snapshots import MetricsSnapshot
from pipelinescope.core.store import AggregationStore, ViewKind

logger = logging.getLogger(__name__)


class MetricsCollector(LoopingCollector):
    """Keeps rolling series of scraped samples and publishes their aggregate.

    start() fetches the endpoint once before the loop begins. An endpoint
    that cannot be reached at that point is a configuration error; once
    running, failed scrapes only keep the previous snapshot.

    Args:
        store: Aggregation store to publish into.
        source: Where the exposition text comes from.
        endpoint: Endpoint URL validated on start(); None skips validation.
        interval_seconds: Delay between scrapes.
        retention_seconds: Age after which samples and idle series are dropped.
        max_samples: Per-series sample cap.
        history_size: Number of published snapshots kept for history().
        clock: Time source.
    """

    name = "metrics"
    kind = ViewKind.METRICS

    def __init__(
        self,
        store: AggregationStore,
        source: MetricsSourcePort,
        endpoint: str | None = None,
        interval_seconds: float = 15.0,
        retention_seconds: float = 24 * 3600.0,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        history_size: int = DEFAULT_MAX_SAMPLES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store, interval_seconds, clock)
        self._source = source
        self._endpoint = endpoint
        self._retention = retention_seconds
        self._max_samples = max_samples
        self._series: dict[SeriesKey, MetricSeries] = {}
        self._history: deque[MetricsSnapshot] = deque(maxlen=history_size)
        self.skipped_lines = 0

    def validate(self) -> None:
        if self._endpoint is not None:
            validate_endpoint(self._endpoint)

    async def start(self) -> None:
        self.validate()
        try:
            await self._source.fetch()
        except UpstreamUnavailableError as exc:
            raise ConfigError(f"Metrics endpoint unreachable at startup: {exc}") from exc
        self._loop.start()

    async def tick(self) -> None:
        now = self._clock()
        try:
            body = await self._source.fetch()
        except UpstreamUnavailableError as exc:
            logger.warning(
                "Metrics scrape failed, keeping previous snapshot",
                extra={"collector": self.name, "error": str(exc)},
            )
            return

        result = parse_exposition(body, now)
        if result.skipped:
            self.skipped_lines += result.skipped
            logger.debug(
                "Skipped malformed metric lines",
                extra={"collector": self.name, "skipped": result.skipped},
            )
        if not result.samples:
            logger.info("Metrics scrape returned no samples", extra={"collector": self.name})
            return

        for sample in result.samples:
            key = sample.key
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = MetricSeries(key, self._retention, self._max_samples)
            series.append(sample)

        for key in [k for k, series in self._series.items() if series.is_expired(now)]:
            del self._series[key]

        snapshot = aggregate_metrics(
            {key: series.snapshot() for key, series in self._series.items()},
            now,
            current={sample.key for sample in result.samples},
        )
        self._publish(snapshot)
        self._history.append(snapshot)

    def current_snapshot(self) -> MetricsSnapshot | None:
        return self._store.snapshot(self.kind)

    def history(self, since: float = 0.0) -> list[MetricsSnapshot]:
        """Published snapshots with timestamp >= since, oldest first."""
        return [snapshot for snapshot in self._history if snapshot.timestamp >= since]
