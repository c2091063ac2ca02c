"""Control-plane collector: readiness of the engine's own deployments."""

import logging
import time
from collections.abc import Callable, Sequence

from pipelinescope.collectors.base import LoopingCollector
from pipelinescope.core.controlplane import (
    KNOWN_COMPONENTS,
    OPERATOR_API_GROUP,
    OPERATOR_NAMESPACES,
    KnownComponent,
    deployment_health,
    discovered_component,
    engine_version,
    is_engine_component,
    overall_health,
    unreachable,
)
from pipelinescope.core.models import ComponentHealth, DeploymentState, PodState
from pipelinescope.core.ports import ClusterStateReaderPort
from pipelinescope.core.snapshots import ControlPlaneSnapshot
from pipelinescope.core.store import AggregationStore, ViewKind

logger = logging.getLogger(__name__)


class ControlPlaneCollector(LoopingCollector):
    """Checks each known component's deployment independently.

    Known components are read one by one from the primary namespace. A
    failed read marks only that component Unreachable. Missing optional
    components are left out; a missing required one is Unreachable.

    The primary namespace and every operator namespace that exists are
    then listed for engine deployments not checked yet, known or not.
    Each reported deployment carries the status of its pods.

    Args:
        store: Aggregation store to publish into.
        reader: Cluster state reader.
        namespace: Namespace of the engine's own deployments.
        operator_namespaces: Other namespaces the engine operator may run in.
        components: Components read individually from `namespace`.
        interval_seconds: Delay between checks.
        clock: Time source.
    """

    name = "controlplane"
    kind = ViewKind.CONTROL_PLANE

    def __init__(
        self,
        store: AggregationStore,
        reader: ClusterStateReaderPort,
        namespace: str = "tekton-pipelines",
        operator_namespaces: Sequence[str] = OPERATOR_NAMESPACES,
        components: Sequence[KnownComponent] = KNOWN_COMPONENTS,
        interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(store, interval_seconds, clock)
        self._reader = reader
        self._namespace = namespace
        self._operator_namespaces = tuple(operator_namespaces)
        self._components = components
        self._known = {component.deployment: component for component in KNOWN_COMPONENTS}

    async def _operator_managed(self) -> bool:
        try:
            return await self._reader.has_api_group(OPERATOR_API_GROUP)
        except Exception as exc:
            logger.warning(
                "Could not list API groups",
                extra={"collector": self.name, "error": str(exc)},
            )
            return False

    async def _namespaces(self) -> tuple[str, ...]:
        """The primary namespace, then each operator namespace that exists."""
        found = [self._namespace]
        for namespace in self._operator_namespaces:
            if namespace in found:
                continue
            try:
                exists = await self._reader.namespace_exists(namespace)
            except Exception as exc:
                logger.debug(
                    "Could not read namespace",
                    extra={"collector": self.name, "namespace": namespace, "error": str(exc)},
                )
                continue
            if exists:
                found.append(namespace)
        return tuple(found)

    async def _pods(self, deployment: DeploymentState) -> tuple[PodState, ...]:
        if not deployment.selector:
            return ()
        try:
            pods = await self._reader.list_pods(deployment.namespace, deployment.selector)
        except Exception as exc:
            logger.warning(
                "Could not list control-plane pods",
                extra={
                    "collector": self.name,
                    "deployment": deployment.name,
                    "error": str(exc),
                },
            )
            return ()
        return tuple(sorted(pods, key=lambda pod: pod.name))

    async def _check(self, component: KnownComponent, checked_at: float) -> ComponentHealth | None:
        try:
            deployment = await self._reader.get_deployment(self._namespace, component.deployment)
        except Exception as exc:
            logger.warning(
                "Could not read control-plane deployment",
                extra={"collector": self.name, "deployment": component.deployment},
                exc_info=True,
            )
            return unreachable(component, self._namespace, checked_at, str(exc) or repr(exc))
        if deployment is None:
            if component.required:
                return unreachable(component, self._namespace, checked_at, "deployment not found")
            return None
        pods = await self._pods(deployment)
        return deployment_health(component, self._namespace, deployment, checked_at, pods)

    async def _discover(
        self, namespace: str, checked: set[str], checked_at: float
    ) -> list[ComponentHealth]:
        """Engine deployments in a namespace whose names are not in `checked`."""
        try:
            deployments = await self._reader.list_deployments(namespace)
        except Exception as exc:
            logger.warning(
                "Could not list control-plane deployments",
                extra={"collector": self.name, "namespace": namespace, "error": str(exc)},
            )
            return []
        found: list[ComponentHealth] = []
        for deployment in sorted(deployments, key=lambda d: d.name):
            if deployment.name in checked:
                continue
            component = self._known.get(deployment.name)
            if component is None:
                if not is_engine_component(deployment):
                    continue
                component = discovered_component(deployment)
            pods = await self._pods(deployment)
            found.append(deployment_health(component, namespace, deployment, checked_at, pods))
        return found

    async def tick(self) -> None:
        now = self._clock()
        operator_managed = await self._operator_managed()
        namespaces = await self._namespaces()

        components: list[ComponentHealth] = []
        for component in self._components:
            health = await self._check(component, now)
            if health is not None:
                components.append(health)

        primary_checked = {component.deployment for component in self._components}
        for namespace in namespaces:
            checked = primary_checked if namespace == self._namespace else set()
            components.extend(await self._discover(namespace, checked, now))

        self._publish(
            ControlPlaneSnapshot(
                timestamp=now,
                components=tuple(components),
                overall=overall_health(components),
                version=engine_version(components),
                operator_managed=operator_managed,
                namespaces=namespaces,
            )
        )

    def current_snapshot(self) -> ControlPlaneSnapshot | None:
        return self._store.snapshot(self.kind)
