"""FastAPI application factory for the pipeline dashboard backend."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pipelinescope.adapters.frameworks.fastapi import create_dashboard_router
from pipelinescope.adapters.logging import StorageLogHandler
from pipelinescope.adapters.storage.ring_buffer import RingBufferLogStorage
from pipelinescope.core.ports import LogStoragePort
from pipelinescope.runtime.embedded import DashboardRuntime

logger = logging.getLogger(__name__)


def create_dashboard_app(
    runtime: DashboardRuntime,
    log_storage: LogStoragePort | None = None,
    capture_logger: str | None = "pipelinescope",
) -> FastAPI:
    """Create the dashboard API application.

    The runtime's collectors start with the application and stop with it.

    Args:
        runtime: Runtime owning the store and the collectors.
        log_storage: Where captured logs go. Defaults to a ring buffer.
        capture_logger: Logger whose records are captured for /logs, None
            to capture nothing.

    Returns:
        Configured FastAPI application instance.
    """
    storage = log_storage if log_storage is not None else RingBufferLogStorage()
    handler = StorageLogHandler(storage, level=logging.INFO)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
        """Start the collectors on startup, stop them on shutdown."""
        captured = logging.getLogger(capture_logger) if capture_logger is not None else None
        if captured is not None:
            captured.addHandler(handler)
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()
            if captured is not None:
                captured.removeHandler(handler)

    app = FastAPI(title="Pipeline Dashboard", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(
        create_dashboard_router(
            runtime.store,
            log_storage=storage,
            trend_storage=runtime.trend_storage,
            metrics_history=runtime.metrics_history,
        )
    )
    return app
