"""Ring buffer storage adapters for captured logs and cost trend points.

Provides bounded in-memory storage that automatically evicts oldest
entries when the buffer is full, so memory use stays predictable for a
long-running dashboard process.
"""

import threading
from collections import deque
from collections.abc import AsyncIterable

from pipelinescope.core.models import CostTrendPoint, LogEntry

# Seven days of points at the default five minute cost interval.
DEFAULT_TREND_POINTS = 2016


class RingBufferLogStorage:
    """Ring buffer implementation of LogStoragePort.

    Writes may come from any thread (logging handlers run wherever the log
    call happens), so the buffer is guarded by a lock.

    Args:
        max_size: Maximum number of entries to store.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        self._buffer: deque[LogEntry] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def write_sync(self, entry: LogEntry) -> None:
        """Write a log entry to storage."""
        with self._lock:
            self._buffer.append(entry)

    async def write(self, entry: LogEntry) -> None:
        self.write_sync(entry)

    def read_sync(self, since: float = 0, level: str | None = None) -> list[LogEntry]:
        with self._lock:
            entries = list(self._buffer)
        wanted = level.upper() if level else None
        filtered = [
            e
            for e in entries
            if e.timestamp > since and (wanted is None or e.level.upper() == wanted)
        ]
        return sorted(filtered, key=lambda e: e.timestamp)

    async def read(self, since: float = 0, level: str | None = None) -> AsyncIterable[LogEntry]:
        """Read log entries since the given timestamp, optionally filtered by level.

        Returns entries with timestamp > since, ordered by timestamp ascending.
        """
        for entry in self.read_sync(since, level):
            yield entry

    async def count(self) -> int:
        return len(self._buffer)


class RingBufferCostTrendStorage:
    """Ring buffer implementation of CostTrendStoragePort.

    Args:
        max_size: Maximum number of trend points to store.
    """

    def __init__(self, max_size: int = DEFAULT_TREND_POINTS) -> None:
        self._buffer: deque[CostTrendPoint] = deque(maxlen=max_size)

    async def write(self, point: CostTrendPoint) -> None:
        """Append a trend point, evicting the oldest when full."""
        self._buffer.append(point)

    async def read(self, since: float = 0) -> AsyncIterable[CostTrendPoint]:
        """Read points with timestamp > since, ordered by timestamp ascending."""
        filtered = [p for p in self._buffer if p.timestamp > since]
        for point in sorted(filtered, key=lambda p: p.timestamp):
            yield point

    async def delete_before(self, timestamp: float) -> int:
        """Delete points with timestamp < given value."""
        kept = [p for p in self._buffer if p.timestamp >= timestamp]
        deleted = len(self._buffer) - len(kept)
        self._buffer.clear()
        self._buffer.extend(kept)
        return deleted

    async def count(self) -> int:
        return len(self._buffer)
