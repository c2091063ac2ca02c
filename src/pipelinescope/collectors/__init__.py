"""Periodic collectors publishing into the aggregation store."""

from pipelinescope.collectors.base import Collector, LoopingCollector
from pipelinescope.collectors.controlplane import ControlPlaneCollector
from pipelinescope.collectors.cost import CostCollector
from pipelinescope.collectors.insights import InsightsEngine
from pipelinescope.collectors.metrics import MetricsCollector
from pipelinescope.collectors.trace import TraceCollector

__all__ = [
    "Collector",
    "ControlPlaneCollector",
    "CostCollector",
    "InsightsEngine",
    "LoopingCollector",
    "MetricsCollector",
    "TraceCollector",
]
