"""Timer-driven loop shared by all collectors."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicLoop:
    """Runs an async tick immediately and then once per interval.

    Ticks of one loop never overlap: the next wait starts only after the
    previous tick returned. An exception escaping a tick is logged with its
    traceback and the loop carries on.

    Args:
        name: Name used in log records.
        tick: Coroutine function performing one collection cycle.
        interval_seconds: Delay between the end of one tick and the next.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[None]],
        interval_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the loop task on the running event loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"collector:{self.name}")

    async def _run(self) -> None:
        assert self._stop_event is not None
        stop = self._stop_event
        while not stop.is_set():
            try:
                await self._tick()
            except Exception:
                logger.exception("Collector tick failed", extra={"collector": self.name})
            self.ticks += 1
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)

    async def stop(self, grace: float = 5.0) -> None:
        """Signal the loop and wait for the in-flight tick, cancelling after grace seconds."""
        task = self._task
        if task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace)
        except TimeoutError:
            logger.warning(
                "Collector did not stop within grace period, cancelling",
                extra={"collector": self.name, "grace": grace},
            )
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None
