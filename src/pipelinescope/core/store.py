"""Process-wide aggregation store holding the latest snapshot per view kind.

Each view kind has exactly one writer, handed out once by writer(). Publishing
swaps a single reference, so readers always see either the previous or the
new snapshot in full. Reads never take a lock.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pipelinescope.core.errors import OwnershipError
from pipelinescope.core.snapshots import (
    ControlPlaneSnapshot,
    CostSnapshot,
    InsightsSnapshot,
    MetricsSnapshot,
    TraceSnapshot,
)


class ViewKind(str, Enum):
    METRICS = "metrics"
    COST = "cost"
    TRACE = "trace"
    INSIGHTS = "insights"
    CONTROL_PLANE = "controlplane"


_SNAPSHOT_TYPES: dict[ViewKind, type] = {
    ViewKind.METRICS: MetricsSnapshot,
    ViewKind.COST: CostSnapshot,
    ViewKind.TRACE: TraceSnapshot,
    ViewKind.INSIGHTS: InsightsSnapshot,
    ViewKind.CONTROL_PLANE: ControlPlaneSnapshot,
}


class _NotAvailable:
    """Sentinel returned by read() before the first publish of a kind."""

    _instance: "_NotAvailable | None" = None

    def __new__(cls) -> "_NotAvailable":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_AVAILABLE"


NOT_AVAILABLE = _NotAvailable()


@dataclass(frozen=True)
class Published:
    """A committed snapshot and the time it was published."""

    kind: ViewKind
    snapshot: Any
    published_at: float


class SnapshotWriter:
    """Exclusive publish handle for one view kind."""

    def __init__(self, store: "AggregationStore", kind: ViewKind) -> None:
        self._store = store
        self.kind = kind

    def publish(self, snapshot: Any) -> Published:
        """Atomically replace the snapshot for this writer's kind."""
        return self._store._commit(self, snapshot)


class AggregationStore:
    """Latest published snapshot per view kind.

    Example:
        ```python
        store = AggregationStore()
        writer = store.writer(ViewKind.TRACE)
        writer.publish(TraceSnapshot(timestamp=time.time()))
        store.read(ViewKind.TRACE).snapshot
        ```
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[ViewKind, Published] = {}
        self._writers: dict[ViewKind, SnapshotWriter] = {}
        self._claim_lock = threading.Lock()

    def writer(self, kind: ViewKind) -> SnapshotWriter:
        """Claim the single writer for a view kind.

        Raises:
            OwnershipError: If the kind already has a writer.
        """
        with self._claim_lock:
            if kind in self._writers:
                raise OwnershipError(f"View kind {kind.value!r} already has a writer")
            writer = SnapshotWriter(self, kind)
            self._writers[kind] = writer
            return writer

    def read(self, kind: ViewKind) -> Published | _NotAvailable:
        """Return the latest published snapshot or NOT_AVAILABLE."""
        return self._entries.get(kind, NOT_AVAILABLE)

    def snapshot(self, kind: ViewKind) -> Any | None:
        """Return the latest snapshot itself, or None before the first publish."""
        entry = self._entries.get(kind)
        return entry.snapshot if entry is not None else None

    def _commit(self, writer: SnapshotWriter, snapshot: Any) -> Published:
        kind = writer.kind
        if self._writers.get(kind) is not writer:
            raise OwnershipError(f"Writer is not the owner of view kind {kind.value!r}")
        expected = _SNAPSHOT_TYPES[kind]
        if not isinstance(snapshot, expected):
            raise TypeError(
                f"{kind.value} snapshot must be {expected.__name__}, "
                f"got {type(snapshot).__name__}"
            )
        entry = Published(kind=kind, snapshot=snapshot, published_at=self._clock())
        # Single reference assignment; readers never see a partial entry.
        self._entries[kind] = entry
        return entry
