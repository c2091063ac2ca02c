"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI

from pipelinescope.adapters.cluster.in_memory import InMemoryClusterReader
from pipelinescope.core.store import AggregationStore
from tests.factories import FakeClock, StaticMetricsSource


@pytest.fixture
def clock() -> FakeClock:
    """Controllable time source starting at a fixed instant."""
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def store(clock: FakeClock) -> AggregationStore:
    """Aggregation store stamping publishes with the fake clock."""
    return AggregationStore(clock)


@pytest.fixture
def reader() -> InMemoryClusterReader:
    """Empty in-memory cluster."""
    return InMemoryClusterReader()


@pytest.fixture
def metrics_source() -> StaticMetricsSource:
    """Metrics source returning an empty body until told otherwise."""
    return StaticMetricsSource()


@pytest.fixture
def trend_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for cost trend storage tests."""
    return str(tmp_path / "trends.db")


@pytest.fixture
def client_factory() -> Callable[[FastAPI], httpx.AsyncClient]:
    """Build an httpx client that talks to an app in-process."""

    def _client(app: FastAPI) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    return _client


@pytest.fixture
async def api_client(
    store: AggregationStore,
    client_factory: Callable[[FastAPI], httpx.AsyncClient],
) -> AsyncGenerator[httpx.AsyncClient]:
    """Client for a bare app serving the dashboard router over the store."""
    from pipelinescope.adapters.frameworks.fastapi import create_dashboard_router

    app = FastAPI()
    app.include_router(create_dashboard_router(store))
    async with client_factory(app) as client:
        yield client
