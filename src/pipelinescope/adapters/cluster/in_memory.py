"""In-memory cluster state reader for tests and local development."""

from collections.abc import Iterable, Mapping, Sequence

from pipelinescope.core.errors import ClusterUnavailableError
from pipelinescope.core.models import DeploymentState, PipelineRun, PodState, TaskRun


class InMemoryClusterReader:
    """Cluster state reader over plain Python collections.

    Runs, deployments and pods are replaced wholesale with the set_* methods.
    Setting `unavailable` makes every read raise ClusterUnavailableError,
    `failing_deployments` makes reads of specific deployments fail and
    `failing_namespaces` makes listings in specific namespaces fail.

    A namespace exists when it is in `namespaces` or holds a deployment.

    Example:
        ```python
        reader = InMemoryClusterReader()
        reader.set_pipeline_runs([run])
        reader.unavailable = True  # simulate an API server outage
        ```
    """

    def __init__(
        self,
        pipeline_runs: Iterable[PipelineRun] = (),
        task_runs: Iterable[TaskRun] = (),
        deployments: Iterable[DeploymentState] = (),
        pods: Iterable[PodState] = (),
    ) -> None:
        self._pipeline_runs = list(pipeline_runs)
        self._task_runs = list(task_runs)
        self._deployments = {(d.namespace, d.name): d for d in deployments}
        self._pods = list(pods)
        self.unavailable = False
        self.failing_deployments: set[str] = set()
        self.failing_namespaces: set[str] = set()
        self.namespaces: set[str] = set()
        self.api_groups: set[str] = set()

    def set_pipeline_runs(self, runs: Iterable[PipelineRun]) -> None:
        self._pipeline_runs = list(runs)

    def set_task_runs(self, task_runs: Iterable[TaskRun]) -> None:
        self._task_runs = list(task_runs)

    def set_deployments(self, deployments: Iterable[DeploymentState]) -> None:
        self._deployments = {(d.namespace, d.name): d for d in deployments}

    def set_pods(self, pods: Iterable[PodState]) -> None:
        self._pods = list(pods)

    def _check_available(self) -> None:
        if self.unavailable:
            raise ClusterUnavailableError("Cluster is unavailable")

    def _check_namespace(self, namespace: str) -> None:
        if namespace in self.failing_namespaces:
            raise ClusterUnavailableError(f"Failed to list namespace {namespace}")

    async def list_pipeline_runs(self) -> Sequence[PipelineRun]:
        self._check_available()
        return list(self._pipeline_runs)

    async def list_task_runs(self) -> Sequence[TaskRun]:
        self._check_available()
        return list(self._task_runs)

    async def get_deployment(self, namespace: str, name: str) -> DeploymentState | None:
        self._check_available()
        if name in self.failing_deployments:
            raise ClusterUnavailableError(f"Failed to read deployment {name}")
        return self._deployments.get((namespace, name))

    async def list_deployments(self, namespace: str) -> Sequence[DeploymentState]:
        self._check_available()
        self._check_namespace(namespace)
        return [d for (ns, _), d in self._deployments.items() if ns == namespace]

    async def list_pods(
        self, namespace: str, selector: Mapping[str, str]
    ) -> Sequence[PodState]:
        self._check_available()
        self._check_namespace(namespace)
        if not selector:
            return []
        return [
            pod
            for pod in self._pods
            if pod.namespace == namespace
            and all(pod.labels.get(key) == value for key, value in selector.items())
        ]

    async def namespace_exists(self, namespace: str) -> bool:
        self._check_available()
        return namespace in self.namespaces or any(
            ns == namespace for ns, _ in self._deployments
        )

    async def has_api_group(self, group: str) -> bool:
        self._check_available()
        return group in self.api_groups
