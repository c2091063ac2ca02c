"""Health mapping for the pipeline engine's control-plane deployments."""

from collections.abc import Iterable
from dataclasses import dataclass

from pipelinescope.core.models import ComponentHealth, DeploymentState, HealthState, PodState


@dataclass(frozen=True)
class KnownComponent:
    """A control-plane deployment the collector looks for."""

    name: str
    deployment: str
    required: bool = False


KNOWN_COMPONENTS: tuple[KnownComponent, ...] = (
    KnownComponent("Pipelines Controller", "tekton-pipelines-controller", required=True),
    KnownComponent("Pipelines Webhook", "tekton-pipelines-webhook", required=True),
    KnownComponent("Events Controller", "tekton-events-controller"),
    KnownComponent("Dashboard", "tekton-dashboard"),
    KnownComponent("Triggers Controller", "tekton-triggers-controller"),
    KnownComponent("Triggers Webhook", "tekton-triggers-webhook"),
    KnownComponent("Triggers EventListener", "el-tekton-triggers-eventlistener"),
    KnownComponent("Chains Controller", "tekton-chains-controller"),
    KnownComponent("Results API", "tekton-results-api"),
    KnownComponent("Results Watcher", "tekton-results-watcher"),
    KnownComponent("Operator Controller", "tekton-operator"),
)

ENGINE_DEPLOYMENT = "tekton-pipelines-controller"

OPERATOR_API_GROUP = "operator.tekton.dev"
OPERATOR_NAMESPACES: tuple[str, ...] = ("tekton-operator", "openshift-operators")

_COMPONENT_NAME_PREFIXES = ("tekton", "el-")
_COMPONENT_LABELS = ("app.kubernetes.io/part-of", "operator.tekton.dev/operand-name")


def is_engine_component(deployment: DeploymentState) -> bool:
    """Whether a deployment not in KNOWN_COMPONENTS still belongs to the engine.

    Matches tekton* and el-* (event listener) deployments, and deployments
    labelled as part of, or operated as, a tekton component.
    """
    if deployment.name.startswith(_COMPONENT_NAME_PREFIXES):
        return True
    return any("tekton" in deployment.labels.get(label, "") for label in _COMPONENT_LABELS)


def discovered_component(deployment: DeploymentState) -> KnownComponent:
    return KnownComponent(deployment.name, deployment.name)


def readiness_state(ready: int, desired: int) -> HealthState:
    """Map replica counts to a health state.

    A deployment scaled to zero is Degraded rather than Healthy: nothing
    is broken, but nothing is serving either.
    """
    if desired <= 0:
        return HealthState.DEGRADED
    if ready >= desired:
        return HealthState.HEALTHY
    if ready > 0:
        return HealthState.DEGRADED
    return HealthState.UNREACHABLE


def extract_version_from_image(image: str) -> str:
    """Return the tag of a container image reference, or "" when it has none.

    Digests are stripped, registry ports are not mistaken for tags and the
    "latest" tag is not treated as a version.

    >>> extract_version_from_image("gcr.io/tekton-releases/controller:v0.50.0@sha256:abc")
    'v0.50.0'
    """
    reference = image.split("@", 1)[0]
    last_segment = reference.rsplit("/", 1)[-1]
    if ":" not in last_segment:
        return ""
    tag = last_segment.rsplit(":", 1)[1]
    if not tag or tag == "latest":
        return ""
    return tag


def deployment_health(
    component: KnownComponent,
    namespace: str,
    deployment: DeploymentState,
    checked_at: float,
    pods: tuple[PodState, ...] = (),
) -> ComponentHealth:
    return ComponentHealth(
        name=component.name,
        deployment=component.deployment,
        namespace=namespace,
        state=readiness_state(deployment.ready_replicas, deployment.desired_replicas),
        last_checked=checked_at,
        ready_replicas=deployment.ready_replicas,
        desired_replicas=deployment.desired_replicas,
        version=extract_version_from_image(deployment.image),
        required=component.required,
        image=deployment.image,
        pods=pods,
    )


def unreachable(
    component: KnownComponent,
    namespace: str,
    checked_at: float,
    error: str,
) -> ComponentHealth:
    return ComponentHealth(
        name=component.name,
        deployment=component.deployment,
        namespace=namespace,
        state=HealthState.UNREACHABLE,
        last_checked=checked_at,
        required=component.required,
        error=error,
    )


def overall_health(components: Iterable[ComponentHealth]) -> HealthState | None:
    """Worst state across components, None when there are none."""
    states = [component.state for component in components]
    if not states:
        return None
    return max(states, key=lambda state: state.rank)


def engine_version(components: Iterable[ComponentHealth]) -> str:
    for component in components:
        if component.deployment == ENGINE_DEPLOYMENT and component.version:
            return component.version
    return "unknown"
