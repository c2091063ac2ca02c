"""Port interfaces for upstream sources and storage adapters.

These protocols define the contracts that adapters must implement.
The collectors depend only on these interfaces, not concrete implementations.
"""

from collections.abc import AsyncIterable, Mapping, Sequence
from typing import Protocol, runtime_checkable

from pipelinescope.core.models import (
    CostTrendPoint,
    DeploymentState,
    LogEntry,
    PipelineRun,
    PodState,
    TaskRun,
)


@runtime_checkable
class ClusterStateReaderPort(Protocol):
    """Port for read-only access to pipeline engine state in the cluster.

    Adapters implementing this protocol supply on-demand snapshots of
    pipeline runs, task runs and control-plane deployments and pods.
    Examples: KubernetesClusterReader, InMemoryClusterReader.
    """

    async def list_pipeline_runs(self) -> Sequence[PipelineRun]:
        """Return all pipeline runs visible to the reader.

        Raises:
            ClusterUnavailableError: If the cluster cannot be reached.
        """
        ...

    async def list_task_runs(self) -> Sequence[TaskRun]:
        """Return all task runs, with resource requests and usage when known.

        Raises:
            ClusterUnavailableError: If the cluster cannot be reached.
        """
        ...

    async def get_deployment(self, namespace: str, name: str) -> DeploymentState | None:
        """Return a deployment's replica state, or None if it does not exist.

        Raises:
            ClusterUnavailableError: If the deployment cannot be read.
        """
        ...

    async def list_deployments(self, namespace: str) -> Sequence[DeploymentState]:
        """Return every deployment in a namespace.

        Raises:
            ClusterUnavailableError: If the deployments cannot be listed.
        """
        ...

    async def list_pods(self, namespace: str, selector: Mapping[str, str]) -> Sequence[PodState]:
        """Return the pods in a namespace whose labels match every selector pair.

        Raises:
            ClusterUnavailableError: If the pods cannot be listed.
        """
        ...

    async def namespace_exists(self, namespace: str) -> bool:
        """Return whether a namespace exists.

        Raises:
            ClusterUnavailableError: If the namespace cannot be read.
        """
        ...

    async def has_api_group(self, group: str) -> bool:
        """Return whether the API server serves an API group.

        Raises:
            ClusterUnavailableError: If the API groups cannot be listed.
        """
        ...


@runtime_checkable
class MetricsSourcePort(Protocol):
    """Port for fetching a Prometheus text exposition body."""

    async def fetch(self) -> str:
        """Return the raw exposition text.

        Raises:
            MetricsUnavailableError: On connection errors or non-200 responses.
        """
        ...


@runtime_checkable
class CostTrendStoragePort(Protocol):
    """Port for cost trend persistence.

    Examples: RingBufferCostTrendStorage, SQLiteCostTrendStorage.
    """

    async def write(self, point: CostTrendPoint) -> None:
        """Append a trend point."""
        ...

    def read(self, since: float = 0) -> AsyncIterable[CostTrendPoint]:
        """Read points with timestamp > since, ordered by timestamp ascending."""
        ...

    async def delete_before(self, timestamp: float) -> int:
        """Delete points with timestamp < given value.

        Returns:
            Number of points deleted.
        """
        ...


@runtime_checkable
class LogStoragePort(Protocol):
    """Port for captured log entries.

    Writes are synchronous so a logging handler can call them from any
    thread, with or without a running event loop.
    """

    def write_sync(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        ...

    def read(self, since: float = 0, level: str | None = None) -> AsyncIterable[LogEntry]:
        """Read log entries since the given timestamp.

        Args:
            since: Unix timestamp. Returns entries with timestamp > since.
            level: Optional level filter (e.g., ERROR).

        Returns:
            AsyncIterable of LogEntry objects, ordered by timestamp ascending.
        """
        ...
