"""SQLite storage adapter for cost trend history."""

from collections.abc import AsyncIterable

from pipelinescope.adapters.storage.sqlite_base import AsyncConnectionManager
from pipelinescope.core.models import CostTrendPoint

_TRENDS_SCHEMA = """
CREATE TABLE IF NOT EXISTS cost_trend (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    total_cost REAL NOT NULL,
    cpu_cost REAL NOT NULL,
    memory_cost REAL NOT NULL,
    storage_cost REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cost_trend_timestamp ON cost_trend(timestamp);
"""

_INSERT_POINT = """
INSERT INTO cost_trend (timestamp, total_cost, cpu_cost, memory_cost, storage_cost)
VALUES (?, ?, ?, ?, ?)
"""

_SELECT_POINTS = """
SELECT timestamp, total_cost, cpu_cost, memory_cost, storage_cost
FROM cost_trend
WHERE timestamp > ?
ORDER BY timestamp ASC, id ASC
"""

_COUNT_POINTS = """
SELECT COUNT(*) FROM cost_trend
"""

_DELETE_POINTS_BEFORE = """
DELETE FROM cost_trend WHERE timestamp < ?
"""


class SQLiteCostTrendStorage:
    """SQLite implementation of CostTrendStoragePort.

    Keeps cost trend history across restarts. Uses aiosqlite for
    non-blocking access and WAL mode for file databases.

    Example:
        ```python
        storage = SQLiteCostTrendStorage("/var/lib/pipelinescope/cost.db")
        await storage.write(point)
        points = [p async for p in storage.read(since=time.time() - 86400)]
        ```
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._manager = AsyncConnectionManager(db_path, _TRENDS_SCHEMA)

    async def write(self, point: CostTrendPoint) -> None:
        """Append a trend point."""
        async with self._manager.connection() as db:
            await db.execute(
                _INSERT_POINT,
                (
                    point.timestamp,
                    point.total_cost,
                    point.cpu_cost,
                    point.memory_cost,
                    point.storage_cost,
                ),
            )
            await db.commit()

    async def read(self, since: float = 0) -> AsyncIterable[CostTrendPoint]:
        """Read points with timestamp > since, ordered by timestamp ascending."""
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_POINTS, (since,)) as cursor:
                async for row in cursor:
                    yield CostTrendPoint(
                        timestamp=row[0],
                        total_cost=row[1],
                        cpu_cost=row[2],
                        memory_cost=row[3],
                        storage_cost=row[4],
                    )

    async def count(self) -> int:
        """Return total number of stored trend points."""
        async with self._manager.connection() as db:
            async with db.execute(_COUNT_POINTS) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def delete_before(self, timestamp: float) -> int:
        """Delete points with timestamp < given value."""
        async with self._manager.connection() as db:
            cursor = await db.execute(_DELETE_POINTS_BEFORE, (timestamp,))
            deleted = cursor.rowcount
            await db.commit()
            return deleted

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        await self._manager.close()
