"""Insights engine: derives insights from the latest metrics and cost views."""

import logging
import time
from collections.abc import Callable, Sequence

from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.core.insights import (
    RULES,
    InsightInputs,
    InsightThresholds,
    Rule,
    generate_insights,
)
from pipelinescope.core.snapshots import InsightsSnapshot
from pipelinescope.core.store import AggregationStore, Published, ViewKind

logger = logging.getLogger(__name__)


class InsightsEngine(LoopingCollector):
    """Regenerates insights whenever a new metrics or cost snapshot is published.

    The generation timestamp is the latest input publish time, and a tick
    whose inputs have not changed since the previous one publishes nothing.
    """

    name = "insights"
    kind = ViewKind.INSIGHTS

    def __init__(
        self,
        store: AggregationStore,
        thresholds: InsightThresholds | None = None,
        rules: Sequence[Rule] = RULES,
        interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store, interval_seconds, clock)
        self._thresholds = thresholds or InsightThresholds()
        self._rules = rules
        self._last_inputs: tuple[float | None, float | None] | None = None

    async def tick(self) -> None:
        metrics = self._store.read(ViewKind.METRICS)
        cost = self._store.read(ViewKind.COST)
        if not metrics and not cost:
            logger.debug("No metrics or cost snapshot yet", extra={"collector": self.name})
            return

        inputs_key = (
            metrics.published_at if isinstance(metrics, Published) else None,
            cost.published_at if isinstance(cost, Published) else None,
        )
        if inputs_key == self._last_inputs:
            return

        inputs = InsightInputs(
            metrics=metrics.snapshot if isinstance(metrics, Published) else None,
            cost=cost.snapshot if isinstance(cost, Published) else None,
            generated_at=max(ts for ts in inputs_key if ts is not None),
            thresholds=self._thresholds,
        )
        snapshot = generate_insights(inputs, self._rules)
        self._publish(snapshot)
        self._last_inputs = inputs_key
        logger.debug(
            "Generated insights",
            extra={"collector": self.name, "count": len(snapshot.insights)},
        )

    def current_snapshot(self) -> InsightsSnapshot | None:
        return self._store.snapshot(self.kind)
