"""Kubernetes-backed cluster state reader.

Reads Tekton PipelineRun and TaskRun custom objects, the resource requests
of task run pods, observed pod usage from metrics.k8s.io, and the replica
and pod status of control-plane deployments. The kubernetes client is
blocking, so every API call runs in a worker thread.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar

import urllib3
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException, OpenApiException
from kubernetes.utils import parse_quantity

from pipelinescope.core.errors import ClusterUnavailableError
from pipelinescope.core.models import (
    ContainerState,
    DeploymentState,
    PipelineRun,
    PodState,
    ResourceAmounts,
    RunStatus,
    TaskRun,
)

logger = logging.getLogger(__name__)

TEKTON_GROUP = "tekton.dev"
TEKTON_VERSION = "v1"
METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"

LABEL_PIPELINE = "tekton.dev/pipeline"
LABEL_PIPELINE_RUN = "tekton.dev/pipelineRun"
LABEL_PIPELINE_TASK = "tekton.dev/pipelineTask"
LABEL_TASK = "tekton.dev/task"
LABEL_TASK_RUN = "tekton.dev/taskRun"

T = TypeVar("T")


def parse_timestamp(value: str | None) -> float | None:
    """Parse an RFC 3339 timestamp into Unix seconds."""
    if not value:
        return None
    return datetime.fromisoformat(value).timestamp()


def status_from_conditions(status: Mapping[str, Any] | None) -> RunStatus:
    """Derive a run status from its Succeeded condition."""
    for condition in (status or {}).get("conditions") or ():
        if condition.get("type") != "Succeeded":
            continue
        value = condition.get("status")
        if value == "True":
            return RunStatus.SUCCEEDED
        if value == "False":
            return RunStatus.FAILED
        return RunStatus.RUNNING
    return RunStatus.UNKNOWN


def _declared_dependencies(obj: Mapping[str, Any]) -> dict[str, tuple[str, ...]]:
    """runAfter edges from the resolved pipeline spec, falling back to an inline one."""
    status = obj.get("status") or {}
    spec = status.get("pipelineSpec") or (obj.get("spec") or {}).get("pipelineSpec") or {}
    dependencies: dict[str, tuple[str, ...]] = {}
    for task in (spec.get("tasks") or []) + (spec.get("finally") or []):
        name = task.get("name")
        if name:
            dependencies[name] = tuple(task.get("runAfter") or ())
    return dependencies


def pipeline_run_from_object(obj: Mapping[str, Any]) -> PipelineRun:
    """Build a PipelineRun from a tekton.dev/v1 PipelineRun object.

    Raises:
        KeyError: If metadata.name, metadata.namespace or
            metadata.creationTimestamp is missing.
        ValueError: If a timestamp cannot be parsed.
    """
    metadata = obj["metadata"]
    name = metadata["name"]
    labels = metadata.get("labels") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    pipeline = (
        labels.get(LABEL_PIPELINE)
        or (spec.get("pipelineRef") or {}).get("name")
        or name
    )
    return PipelineRun(
        namespace=metadata["namespace"],
        name=name,
        pipeline=pipeline,
        status=status_from_conditions(status),
        created_at=parse_timestamp(metadata["creationTimestamp"]) or 0.0,
        start_time=parse_timestamp(status.get("startTime")),
        end_time=parse_timestamp(status.get("completionTime")),
        task_dependencies=_declared_dependencies(obj),
    )


def task_run_from_object(
    obj: Mapping[str, Any],
    requests: ResourceAmounts | None = None,
    usage: ResourceAmounts | None = None,
) -> TaskRun:
    """Build a TaskRun from a tekton.dev/v1 TaskRun object.

    Raises:
        KeyError: If metadata.name or metadata.namespace is missing.
        ValueError: If a timestamp cannot be parsed.
    """
    metadata = obj["metadata"]
    name = metadata["name"]
    labels = metadata.get("labels") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return TaskRun(
        namespace=metadata["namespace"],
        name=name,
        task=labels.get(LABEL_TASK) or (spec.get("taskRef") or {}).get("name") or name,
        pipeline_run=labels.get(LABEL_PIPELINE_RUN),
        pipeline_task=labels.get(LABEL_PIPELINE_TASK),
        status=status_from_conditions(status),
        start_time=parse_timestamp(status.get("startTime")),
        end_time=parse_timestamp(status.get("completionTime")),
        requests=requests,
        usage=usage,
    )


def resource_amounts(resources: Mapping[str, Any] | None) -> ResourceAmounts:
    """Convert a cpu/memory/ephemeral-storage quantity map to ResourceAmounts."""
    resources = resources or {}
    return ResourceAmounts(
        cpu_cores=float(parse_quantity(resources.get("cpu", 0))),
        memory_bytes=float(parse_quantity(resources.get("memory", 0))),
        storage_bytes=float(parse_quantity(resources.get("ephemeral-storage", 0))),
    )


def _pod_requests(pod: Any) -> ResourceAmounts:
    total = ResourceAmounts()
    for container in pod.spec.containers or ():
        requests = container.resources.requests if container.resources else None
        total = total + resource_amounts(requests)
    return total


def _pod_usage(pod_metrics: Mapping[str, Any]) -> ResourceAmounts:
    total = ResourceAmounts()
    for container in pod_metrics.get("containers") or ():
        total = total + resource_amounts(container.get("usage"))
    return total


def deployment_state_from_object(deployment: Any, namespace: str) -> DeploymentState:
    """Build a DeploymentState from a V1Deployment. Any missing part falls back to its default."""
    metadata = deployment.metadata
    spec = deployment.spec
    template = spec.template if spec else None
    pod_spec = template.spec if template else None
    containers = (pod_spec.containers if pod_spec else None) or []
    selector = spec.selector if spec else None
    status = deployment.status
    return DeploymentState(
        namespace=(metadata.namespace if metadata else None) or namespace,
        name=metadata.name if metadata else "",
        desired_replicas=spec.replicas if spec and spec.replicas is not None else 1,
        ready_replicas=(status.ready_replicas if status else None) or 0,
        image=(containers[0].image or "") if containers else "",
        labels=dict((metadata.labels if metadata else None) or {}),
        selector=dict((selector.match_labels if selector else None) or {}),
    )


def container_state_from_object(container_status: Any) -> ContainerState:
    """Build a ContainerState from a V1ContainerStatus."""
    state = container_status.state
    name, reason = "unknown", ""
    if state is not None:
        if state.running is not None:
            name = "running"
        elif state.waiting is not None:
            name, reason = "waiting", state.waiting.reason or ""
        elif state.terminated is not None:
            name, reason = "terminated", state.terminated.reason or ""
    return ContainerState(
        name=container_status.name,
        image=container_status.image or "",
        ready=bool(container_status.ready),
        state=name,
        reason=reason,
    )


def pod_state_from_object(pod: Any, namespace: str) -> PodState:
    """Build a PodState from a V1Pod."""
    metadata = pod.metadata
    status = pod.status
    statuses = (status.container_statuses if status else None) or ()
    conditions = (status.conditions if status else None) or ()
    created = metadata.creation_timestamp if metadata else None
    return PodState(
        namespace=(metadata.namespace if metadata else None) or namespace,
        name=metadata.name if metadata else "",
        phase=(status.phase if status else None) or "Unknown",
        ready=any(c.type == "Ready" and c.status == "True" for c in conditions),
        restarts=sum(s.restart_count or 0 for s in statuses),
        node=(pod.spec.node_name if pod.spec else None) or "",
        ip=(status.pod_ip if status else None) or "",
        created_at=created.timestamp() if created else None,
        labels=dict((metadata.labels if metadata else None) or {}),
        containers=tuple(container_state_from_object(s) for s in statuses),
    )


def load_api_client(kubeconfig: str | None = None, master: str | None = None) -> client.ApiClient:
    """Create an API client from in-cluster config, falling back to kubeconfig.

    An explicit kubeconfig path skips the in-cluster attempt. A master URL
    overrides the server address from either source.

    Raises:
        ClusterUnavailableError: If no configuration can be loaded.
    """
    configuration = client.Configuration()
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        else:
            try:
                config.load_incluster_config(client_configuration=configuration)
                logger.info("Loaded in-cluster Kubernetes config")
            except config.ConfigException:
                config.load_kube_config(client_configuration=configuration)
                logger.info("Loaded kubeconfig")
    except (config.ConfigException, OSError) as exc:
        raise ClusterUnavailableError(f"No Kubernetes configuration available: {exc}") from exc
    if master:
        configuration.host = master
    return client.ApiClient(configuration)


class KubernetesClusterReader:
    """Cluster state reader backed by the official kubernetes client.

    Args:
        api_client: Pre-configured API client. When omitted, one is loaded
            lazily on first use from kubeconfig / master.
        kubeconfig: Path to a kubeconfig file.
        master: API server URL overriding the configured one.
    """

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        kubeconfig: str | None = None,
        master: str | None = None,
    ) -> None:
        self._api_client = api_client
        self._kubeconfig = kubeconfig
        self._master = master
        self._custom: client.CustomObjectsApi | None = None
        self._core: client.CoreV1Api | None = None
        self._apps: client.AppsV1Api | None = None

    def _ensure_clients(self) -> None:
        if self._custom is not None:
            return
        if self._api_client is None:
            self._api_client = load_api_client(self._kubeconfig, self._master)
        self._custom = client.CustomObjectsApi(self._api_client)
        self._core = client.CoreV1Api(self._api_client)
        self._apps = client.AppsV1Api(self._api_client)

    async def _call(self, what: str, func: Callable[[], T]) -> T:
        """Run a blocking client call in a worker thread, translating failures."""
        try:
            return await asyncio.to_thread(func)
        except (OpenApiException, urllib3.exceptions.HTTPError, OSError) as exc:
            raise ClusterUnavailableError(f"Failed to {what}: {exc}") from exc

    async def _list_custom(self, group: str, version: str, plural: str) -> list[dict[str, Any]]:
        self._ensure_clients()
        assert self._custom is not None
        custom = self._custom
        result = await self._call(
            f"list {plural}.{group}",
            lambda: custom.list_cluster_custom_object(group=group, version=version, plural=plural),
        )
        return list(result.get("items") or [])

    async def list_pipeline_runs(self) -> Sequence[PipelineRun]:
        runs: list[PipelineRun] = []
        for obj in await self._list_custom(TEKTON_GROUP, TEKTON_VERSION, "pipelineruns"):
            try:
                runs.append(pipeline_run_from_object(obj))
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Skipping malformed PipelineRun", extra={"error": str(exc)})
        return runs

    async def _pod_resources(self) -> dict[tuple[str, str], tuple[str, ResourceAmounts]]:
        """(namespace, task run) -> (pod name, summed container requests)."""
        self._ensure_clients()
        assert self._core is not None
        core = self._core
        pods = await self._call(
            "list task run pods",
            lambda: core.list_pod_for_all_namespaces(label_selector=LABEL_TASK_RUN),
        )
        resources: dict[tuple[str, str], tuple[str, ResourceAmounts]] = {}
        for pod in pods.items:
            labels = pod.metadata.labels or {}
            task_run = labels.get(LABEL_TASK_RUN)
            if not task_run:
                continue
            try:
                requests = _pod_requests(pod)
            except (TypeError, ValueError) as exc:
                logger.debug(
                    "Skipping pod with unparseable requests",
                    extra={"pod": pod.metadata.name, "error": str(exc)},
                )
                continue
            resources[(pod.metadata.namespace, task_run)] = (pod.metadata.name, requests)
        return resources

    async def _pod_usage(self) -> dict[tuple[str, str], ResourceAmounts]:
        """(namespace, pod) -> observed usage. Empty when metrics-server is unavailable."""
        try:
            items = await self._list_custom(METRICS_GROUP, METRICS_VERSION, "pods")
        except ClusterUnavailableError as exc:
            logger.debug("Pod metrics unavailable", extra={"error": str(exc)})
            return {}
        usage: dict[tuple[str, str], ResourceAmounts] = {}
        for item in items:
            metadata = item.get("metadata") or {}
            try:
                usage[(metadata["namespace"], metadata["name"])] = _pod_usage(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Skipping malformed pod metrics", extra={"error": str(exc)})
        return usage

    async def list_task_runs(self) -> Sequence[TaskRun]:
        objects = await self._list_custom(TEKTON_GROUP, TEKTON_VERSION, "taskruns")
        pods = await self._pod_resources()
        usage = await self._pod_usage()

        task_runs: list[TaskRun] = []
        for obj in objects:
            try:
                metadata = obj["metadata"]
                pod = pods.get((metadata["namespace"], metadata["name"]))
                requests = observed = None
                if pod is not None:
                    pod_name, requests = pod
                    observed = usage.get((metadata["namespace"], pod_name))
                task_runs.append(
                    task_run_from_object(
                        obj,
                        requests=None if requests is None or requests.is_empty else requests,
                        usage=observed,
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Skipping malformed TaskRun", extra={"error": str(exc)})
        return task_runs

    async def _read_or_none(self, what: str, func: Callable[[], T]) -> T | None:
        """Like _call, but a 404 yields None."""
        try:
            return await self._call(what, func)
        except ClusterUnavailableError as exc:
            cause = exc.__cause__
            if isinstance(cause, ApiException) and cause.status == 404:
                return None
            raise

    async def get_deployment(self, namespace: str, name: str) -> DeploymentState | None:
        self._ensure_clients()
        assert self._apps is not None
        apps = self._apps
        deployment = await self._read_or_none(
            f"read deployment {name}",
            lambda: apps.read_namespaced_deployment(name, namespace),
        )
        if deployment is None:
            return None
        return deployment_state_from_object(deployment, namespace)

    async def list_deployments(self, namespace: str) -> Sequence[DeploymentState]:
        self._ensure_clients()
        assert self._apps is not None
        apps = self._apps
        result = await self._call(
            f"list deployments in {namespace}",
            lambda: apps.list_namespaced_deployment(namespace),
        )
        return [deployment_state_from_object(item, namespace) for item in result.items or ()]

    async def list_pods(
        self, namespace: str, selector: Mapping[str, str]
    ) -> Sequence[PodState]:
        if not selector:
            return []
        self._ensure_clients()
        assert self._core is not None
        core = self._core
        label_selector = ",".join(f"{key}={value}" for key, value in sorted(selector.items()))
        result = await self._call(
            f"list pods in {namespace}",
            lambda: core.list_namespaced_pod(namespace, label_selector=label_selector),
        )
        return [pod_state_from_object(pod, namespace) for pod in result.items or ()]

    async def namespace_exists(self, namespace: str) -> bool:
        self._ensure_clients()
        assert self._core is not None
        core = self._core
        found = await self._read_or_none(
            f"read namespace {namespace}", lambda: core.read_namespace(namespace)
        )
        return found is not None

    async def has_api_group(self, group: str) -> bool:
        self._ensure_clients()
        apis = client.ApisApi(self._api_client)
        result = await self._call("list API groups", apis.get_api_versions)
        return any(item.name == group for item in result.groups or ())
