"""Test doubles and builders for runs, task runs and exposition bodies."""

from pipelinescope.core.errors import MetricsUnavailableError
from pipelinescope.core.models import (
    GIB,
    DeploymentState,
    PipelineRun,
    PodState,
    ResourceAmounts,
    RunStatus,
    TaskRun,
)

PIPELINE_DURATION = "tekton_pipelines_controller_pipelinerun_duration_seconds"
TASK_DURATION = "tekton_pipelines_controller_pipelinerun_taskrun_duration_seconds"


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class StaticMetricsSource:
    """MetricsSourcePort returning a fixed body, or failing on demand."""

    def __init__(self, body: str = "") -> None:
        self.body = body
        self.failing = False
        self.calls = 0

    async def fetch(self) -> str:
        self.calls += 1
        if self.failing:
            raise MetricsUnavailableError("connection refused")
        return self.body


def make_run(
    name: str = "build-123",
    namespace: str = "default",
    pipeline: str = "build",
    status: RunStatus = RunStatus.RUNNING,
    start: float | None = 0.0,
    end: float | None = None,
    dependencies: dict[str, tuple[str, ...]] | None = None,
) -> PipelineRun:
    return PipelineRun(
        namespace=namespace,
        name=name,
        pipeline=pipeline,
        status=status,
        created_at=start if start is not None else 0.0,
        start_time=start,
        end_time=end,
        task_dependencies=dependencies or {},
    )


def make_task_run(
    name: str,
    start: float | None,
    end: float | None = None,
    run: str = "build-123",
    namespace: str = "default",
    task: str | None = None,
    status: RunStatus | None = None,
    pipeline_task: str | None = None,
    cpu: float | None = None,
    memory_gib: float = 0.0,
    storage_gib: float = 0.0,
    usage: ResourceAmounts | None = None,
) -> TaskRun:
    if status is None:
        status = RunStatus.SUCCEEDED if end is not None else RunStatus.RUNNING
    requests = None
    if cpu is not None:
        requests = ResourceAmounts(
            cpu_cores=cpu, memory_bytes=memory_gib * GIB, storage_bytes=storage_gib * GIB
        )
    return TaskRun(
        namespace=namespace,
        name=name,
        task=task or name,
        pipeline_run=run,
        pipeline_task=pipeline_task,
        status=status,
        start_time=start,
        end_time=end,
        requests=requests,
        usage=usage,
    )


def make_deployment(
    name: str,
    ready: int = 1,
    desired: int = 1,
    image: str = "",
    namespace: str = "tekton-pipelines",
    labels: dict[str, str] | None = None,
    selector: dict[str, str] | None = None,
) -> DeploymentState:
    return DeploymentState(
        namespace=namespace,
        name=name,
        desired_replicas=desired,
        ready_replicas=ready,
        image=image,
        labels=labels or {},
        selector=selector or {},
    )


def make_pod(
    name: str,
    app: str,
    phase: str = "Running",
    ready: bool = True,
    restarts: int = 0,
    namespace: str = "tekton-pipelines",
) -> PodState:
    """A pod labelled app=<app>, matched by a deployment selecting on app."""
    return PodState(
        namespace=namespace,
        name=name,
        phase=phase,
        ready=ready,
        restarts=restarts,
        labels={"app": app},
    )


def duration_histogram(
    family: str,
    identity_label: str,
    name: str,
    count: float,
    total: float,
    status: str = "success",
    namespace: str = "default",
) -> str:
    """Render the _count and _sum lines of one duration histogram series."""
    labels = f'namespace="{namespace}",{identity_label}="{name}",status="{status}"'
    return f"{family}_count{{{labels}}} {count}\n{family}_sum{{{labels}}} {total}\n"


def pipeline_durations(name: str, count: float, total: float, **kwargs: str) -> str:
    return duration_histogram(PIPELINE_DURATION, "pipeline", name, count, total, **kwargs)


def task_durations(name: str, count: float, total: float, **kwargs: str) -> str:
    return duration_histogram(TASK_DURATION, "task", name, count, total, **kwargs)
