"""Tests for the aggregation store."""

import pytest

from pipelinescope.core.errors import OwnershipError
from pipelinescope.core.snapshots import CostSnapshot, MetricsSnapshot, TraceSnapshot
from pipelinescope.core.store import (
    NOT_AVAILABLE,
    AggregationStore,
    Published,
    SnapshotWriter,
    ViewKind,
)
from tests.factories import FakeClock


class TestAggregationStore:
    """Tests for AggregationStore ownership and publishing."""

    @pytest.mark.core
    def test_read_before_publish_is_not_available(self, store: AggregationStore) -> None:
        for kind in ViewKind:
            assert store.read(kind) is NOT_AVAILABLE
            assert store.snapshot(kind) is None

    @pytest.mark.core
    def test_not_available_is_falsy(self) -> None:
        assert not NOT_AVAILABLE
        assert repr(NOT_AVAILABLE) == "NOT_AVAILABLE"

    @pytest.mark.core
    def test_publish_is_visible_to_readers(
        self, store: AggregationStore, clock: FakeClock
    ) -> None:
        writer = store.writer(ViewKind.TRACE)
        snapshot = TraceSnapshot(timestamp=1.0)
        writer.publish(snapshot)
        entry = store.read(ViewKind.TRACE)
        assert isinstance(entry, Published)
        assert entry.snapshot is snapshot
        assert entry.published_at == clock.now
        assert entry.kind is ViewKind.TRACE

    @pytest.mark.core
    def test_publish_replaces_previous_snapshot(
        self, store: AggregationStore, clock: FakeClock
    ) -> None:
        writer = store.writer(ViewKind.METRICS)
        writer.publish(MetricsSnapshot(timestamp=1.0))
        clock.advance(15)
        second = MetricsSnapshot(timestamp=2.0)
        writer.publish(second)
        assert store.snapshot(ViewKind.METRICS) is second
        assert store.read(ViewKind.METRICS).published_at == clock.now

    @pytest.mark.core
    def test_second_writer_for_same_kind_is_rejected(self, store: AggregationStore) -> None:
        store.writer(ViewKind.COST)
        with pytest.raises(OwnershipError, match="already has a writer"):
            store.writer(ViewKind.COST)

    @pytest.mark.core
    def test_writers_for_different_kinds_coexist(self, store: AggregationStore) -> None:
        store.writer(ViewKind.COST)
        store.writer(ViewKind.TRACE)

    @pytest.mark.core
    def test_foreign_writer_cannot_publish(self, store: AggregationStore) -> None:
        store.writer(ViewKind.TRACE)
        rogue = SnapshotWriter(store, ViewKind.TRACE)
        with pytest.raises(OwnershipError, match="not the owner"):
            rogue.publish(TraceSnapshot(timestamp=1.0))
        assert store.read(ViewKind.TRACE) is NOT_AVAILABLE

    @pytest.mark.core
    def test_writer_of_another_store_cannot_publish(self, store: AggregationStore) -> None:
        other = AggregationStore().writer(ViewKind.TRACE)
        store.writer(ViewKind.TRACE)
        with pytest.raises(OwnershipError):
            store._commit(other, TraceSnapshot(timestamp=1.0))

    @pytest.mark.core
    def test_wrong_snapshot_type_is_rejected(self, store: AggregationStore) -> None:
        writer = store.writer(ViewKind.TRACE)
        with pytest.raises(TypeError, match="must be TraceSnapshot, got CostSnapshot"):
            writer.publish(CostSnapshot(timestamp=1.0))
        assert store.read(ViewKind.TRACE) is NOT_AVAILABLE
