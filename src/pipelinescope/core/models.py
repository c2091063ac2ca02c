"""Core domain models for pipeline observability data."""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

GIB = 1024**3
SECONDS_PER_HOUR = 3600.0


class RunStatus(str, Enum):
    """Execution status of a pipeline run or task run."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    RUNNING = "Running"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


class InsightCategory(str, Enum):
    COST_ANOMALY = "CostAnomaly"
    PERFORMANCE_REGRESSION = "PerformanceRegression"
    RESOURCE_WASTE = "ResourceWaste"
    RECOMMENDATION = "Recommendation"


class Severity(str, Enum):
    """Insight severity, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class HealthState(str, Enum):
    """Readiness of a control-plane component, ordered from best to worst."""

    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNREACHABLE = "Unreachable"

    @property
    def rank(self) -> int:
        return _HEALTH_ORDER.index(self)


_HEALTH_ORDER = [HealthState.HEALTHY, HealthState.DEGRADED, HealthState.UNREACHABLE]


@dataclass(frozen=True)
class SeriesKey:
    """Identity of a metric series: name plus sorted label pairs."""

    name: str
    labels: tuple[tuple[str, str], ...] = ()

    def label(self, name: str, default: str = "") -> str:
        for key, value in self.labels:
            if key == name:
                return value
        return default

    def __str__(self) -> str:
        if not self.labels:
            return self.name
        pairs = ",".join(f'{k}="{v}"' for k, v in self.labels)
        return f"{self.name}{{{pairs}}}"


@dataclass(frozen=True)
class Sample:
    """A single metric observation.

    Attributes:
        name: Metric name (e.g., tekton_pipelines_controller_running_taskruns).
        labels: Key-value pairs for metric dimensions.
        value: The observed value.
        timestamp: Unix timestamp in seconds.
    """

    name: str
    labels: Mapping[str, str]
    value: float
    timestamp: float

    @property
    def key(self) -> SeriesKey:
        return SeriesKey(self.name, tuple(sorted(self.labels.items())))


@dataclass(frozen=True)
class ResourceAmounts:
    """Instantaneous resource amounts: CPU cores, memory and storage bytes."""

    cpu_cores: float = 0.0
    memory_bytes: float = 0.0
    storage_bytes: float = 0.0

    def __add__(self, other: "ResourceAmounts") -> "ResourceAmounts":
        return ResourceAmounts(
            cpu_cores=self.cpu_cores + other.cpu_cores,
            memory_bytes=self.memory_bytes + other.memory_bytes,
            storage_bytes=self.storage_bytes + other.storage_bytes,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.cpu_cores or self.memory_bytes or self.storage_bytes)


@dataclass(frozen=True)
class PipelineRun:
    """A pipeline run as seen by the cluster state reader.

    Attributes:
        namespace: Namespace of the run.
        name: Name of the PipelineRun object.
        pipeline: Name of the referenced pipeline (falls back to run name).
        status: Execution status derived from the Succeeded condition.
        created_at: Creation timestamp.
        start_time: When the run started, if it has.
        end_time: When the run completed, if it has.
        task_dependencies: Declared runAfter edges, pipeline task -> parents.
    """

    namespace: str
    name: str
    pipeline: str
    status: RunStatus
    created_at: float
    start_time: float | None = None
    end_time: float | None = None
    task_dependencies: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class TaskRun:
    """A task run as seen by the cluster state reader.

    Attributes:
        namespace: Namespace of the task run.
        name: Name of the TaskRun object.
        task: Name of the referenced task (falls back to task run name).
        pipeline_run: Name of the owning pipeline run, if any.
        pipeline_task: Name of the pipeline task this run executes, if any.
        status: Execution status derived from the Succeeded condition.
        start_time: When the task run started, if it has.
        end_time: When the task run completed, if it has.
        requests: Summed container resource requests of its pod.
        usage: Observed resource usage of its pod, when metrics are available.
    """

    namespace: str
    name: str
    task: str
    pipeline_run: str | None
    status: RunStatus
    pipeline_task: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    requests: ResourceAmounts | None = None
    usage: ResourceAmounts | None = None

    @property
    def owner_key(self) -> str | None:
        if self.pipeline_run is None:
            return None
        return f"{self.namespace}/{self.pipeline_run}"


@dataclass(frozen=True)
class DeploymentState:
    """Replica status of a control-plane deployment.

    Attributes:
        namespace: Namespace of the deployment.
        name: Deployment name.
        desired_replicas: spec.replicas, 1 when unset.
        ready_replicas: status.readyReplicas, 0 when unset.
        image: Image of the first container, "" when there is none.
        labels: Deployment labels, used to recognise engine components.
        selector: matchLabels of the pod selector.
    """

    namespace: str
    name: str
    desired_replicas: int
    ready_replicas: int
    image: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    selector: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerState:
    """State of one container in a control-plane pod."""

    name: str
    image: str
    ready: bool
    state: str = "unknown"
    reason: str = ""


@dataclass(frozen=True)
class PodState:
    """Status of one pod backing a control-plane deployment.

    Attributes:
        namespace: Namespace of the pod.
        name: Pod name.
        phase: Pod phase (Pending, Running, Succeeded, Failed, Unknown).
        ready: Whether the pod's Ready condition is True.
        restarts: Restart count summed over its containers.
        node: Node the pod is scheduled on.
        ip: Pod IP.
        created_at: Creation timestamp.
        labels: Pod labels.
        containers: Per-container state.
    """

    namespace: str
    name: str
    phase: str
    ready: bool
    restarts: int = 0
    node: str = ""
    ip: str = ""
    created_at: float | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    containers: tuple[ContainerState, ...] = ()


@dataclass(frozen=True)
class Span:
    """The execution window of one task run inside a trace.

    Attributes:
        span_id: Unique span id (tr-<task run name>).
        trace_id: Id of the owning trace.
        name: Task name.
        task_run: Task run name.
        status: Task run status.
        start_time: Start timestamp.
        end_time: End timestamp, None while running.
        duration: end - start, or now - start while running. Never negative.
        depends_on: Span ids this span waits for.
        tags: Free-form string tags.
    """

    span_id: str
    trace_id: str
    name: str
    task_run: str
    status: RunStatus
    start_time: float
    end_time: float | None
    duration: float
    depends_on: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def effective_end(self) -> float:
        return self.start_time + self.duration


@dataclass(frozen=True)
class Trace:
    """The reconstructed execution of one pipeline run."""

    trace_id: str
    pipeline_run: str
    pipeline: str
    namespace: str
    status: RunStatus
    start_time: float
    end_time: float | None
    duration: float
    spans: tuple[Span, ...] = ()
    dependency_source: str = "observed"

    def span(self, span_id: str) -> Span | None:
        for span in self.spans:
            if span.span_id == span_id:
                return span
        return None


@dataclass(frozen=True)
class RateTable:
    """Per-unit prices used to turn resource usage into cost."""

    cpu_per_hour: float
    memory_per_gb_hour: float
    storage_per_gb_hour: float

    def invalid_fields(self) -> list[str]:
        return [
            name
            for name in ("cpu_per_hour", "memory_per_gb_hour", "storage_per_gb_hour")
            if not math.isfinite(getattr(self, name)) or getattr(self, name) < 0
        ]


@dataclass(frozen=True)
class CostRecord:
    """Accumulated resource usage and cost for one pipeline run.

    total_cost is derived from the three cost components and is always
    exactly their sum.
    """

    namespace: str
    name: str
    pipeline: str
    status: RunStatus
    rates: RateTable
    started_at: float
    last_accounted_at: float
    cpu_seconds: float = 0.0
    memory_byte_seconds: float = 0.0
    storage_byte_seconds: float = 0.0
    requested_cpu_seconds: float = 0.0
    requested_memory_byte_seconds: float = 0.0
    observed: bool = False
    cpu_cost: float = 0.0
    memory_cost: float = 0.0
    storage_cost: float = 0.0
    frozen: bool = False
    total_cost: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "total_cost", self.cpu_cost + self.memory_cost + self.storage_cost
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def cpu_hours(self) -> float:
        return self.cpu_seconds / SECONDS_PER_HOUR

    @property
    def memory_gb_hours(self) -> float:
        return self.memory_byte_seconds / GIB / SECONDS_PER_HOUR

    @property
    def storage_gb_hours(self) -> float:
        return self.storage_byte_seconds / GIB / SECONDS_PER_HOUR


@dataclass(frozen=True)
class CostTrendPoint:
    """Total cost across all tracked runs at one cost collector tick."""

    timestamp: float
    total_cost: float
    cpu_cost: float
    memory_cost: float
    storage_cost: float


@dataclass(frozen=True)
class Insight:
    """A derived observation about cost, performance or resource use.

    Attributes:
        insight_id: Deterministic id derived from rule and sources.
        category: Insight category.
        severity: How urgent the insight is.
        message: Human-readable description.
        sources: Referenced run, pipeline or task identities.
        generated_at: Timestamp of the input data the insight was derived from.
        rule: Name of the rule that produced it.
        score: Rule-specific magnitude (ratio, percentage, dollars).
        context: Supporting numbers.
    """

    insight_id: str
    category: InsightCategory
    severity: Severity
    message: str
    sources: tuple[str, ...]
    generated_at: float
    rule: str
    score: float = 0.0
    context: Mapping[str, float | str] = field(default_factory=dict)


@dataclass(frozen=True)
class ComponentHealth:
    """Health of one control-plane component at the last check."""

    name: str
    deployment: str
    namespace: str
    state: HealthState
    last_checked: float
    ready_replicas: int = 0
    desired_replicas: int = 0
    version: str = ""
    required: bool = False
    error: str | None = None
    image: str = ""
    pods: tuple[PodState, ...] = ()


@dataclass(frozen=True)
class LogEntry:
    """A structured log entry.

    Attributes:
        timestamp: Unix timestamp in seconds.
        level: Log level (e.g., INFO, ERROR, DEBUG).
        message: The log message.
        attributes: Additional structured fields.
    """

    timestamp: float
    level: str
    message: str
    attributes: dict[str, str | int | float | bool] = field(default_factory=dict)
