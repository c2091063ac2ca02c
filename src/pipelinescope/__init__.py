"""pipelinescope: metrics, cost, traces and insights for Tekton pipelines.

Collectors poll the cluster and the pipeline controller, derive immutable
snapshots and publish them into an AggregationStore that the read-only API
serves.
"""

from pipelinescope.core.config import DashboardConfig
from pipelinescope.core.errors import (
    ClusterUnavailableError,
    ConfigError,
    DashboardError,
    MetricsUnavailableError,
    OwnershipError,
    UpstreamUnavailableError,
)
from pipelinescope.core.store import NOT_AVAILABLE, AggregationStore, Published, ViewKind

__all__ = [
    "NOT_AVAILABLE",
    "AggregationStore",
    "ClusterUnavailableError",
    "ConfigError",
    "DashboardConfig",
    "DashboardError",
    "MetricsUnavailableError",
    "OwnershipError",
    "Published",
    "UpstreamUnavailableError",
    "ViewKind",
]
