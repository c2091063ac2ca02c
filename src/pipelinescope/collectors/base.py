"""Shared collector plumbing: store writer, loop and lifecycle."""

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from pipelinescope.core.store import AggregationStore, Published, ViewKind
from pipelinescope.runtime.loop import PeriodicLoop


@runtime_checkable
class Collector(Protocol):
    """What the runtime needs from a collector."""

    name: str

    async def start(self) -> None: ...

    async def stop(self, grace: float = 5.0) -> None: ...

    async def tick(self) -> None: ...

    def current_snapshot(self) -> Any | None: ...


class LoopingCollector:
    """Base for collectors that publish one view kind from a periodic tick.

    Claims the store writer for `kind` on construction, so a second
    collector for the same kind on the same store raises OwnershipError.
    Subclasses implement tick() and may override validate(), which start()
    calls before the loop begins.
    """

    name: str = "collector"
    kind: ViewKind

    def __init__(
        self,
        store: AggregationStore,
        interval_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._writer = store.writer(self.kind)
        self._clock = clock
        self._loop = PeriodicLoop(self.name, self.tick, interval_seconds)

    @property
    def running(self) -> bool:
        return self._loop.running

    def validate(self) -> None:
        """Check configuration. Raise ConfigError to keep the collector from starting."""

    async def start(self) -> None:
        self.validate()
        self._loop.start()

    async def stop(self, grace: float = 5.0) -> None:
        await self._loop.stop(grace)

    async def tick(self) -> None:
        raise NotImplementedError

    def current_snapshot(self) -> Any | None:
        return self._store.snapshot(self.kind)

    def _publish(self, snapshot: Any) -> Published:
        return self._writer.publish(snapshot)
