"""Tests for the periodic collector loop."""

import asyncio

import pytest

from pipelinescope.runtime.loop import PeriodicLoop

pytestmark = pytest.mark.tier(1)


class TestPeriodicLoop:
    """Tests for PeriodicLoop start, tick and stop."""

    @pytest.mark.collectors
    def test_rejects_non_positive_interval(self) -> None:
        async def tick() -> None:
            pass

        with pytest.raises(ValueError, match="must be positive"):
            PeriodicLoop("bad", tick, 0)

    @pytest.mark.collectors
    async def test_ticks_immediately_then_periodically(self) -> None:
        calls: list[float] = []
        enough = asyncio.Event()

        async def tick() -> None:
            calls.append(asyncio.get_running_loop().time())
            if len(calls) >= 3:
                enough.set()

        loop = PeriodicLoop("test", tick, 0.01)
        loop.start()
        await asyncio.wait_for(enough.wait(), timeout=2)
        await loop.stop()
        assert len(calls) >= 3
        assert not loop.running

    @pytest.mark.collectors
    async def test_tick_exception_does_not_stop_loop(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        calls = 0
        recovered = asyncio.Event()

        async def tick() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            recovered.set()

        loop = PeriodicLoop("flaky", tick, 0.01)
        loop.start()
        await asyncio.wait_for(recovered.wait(), timeout=2)
        await loop.stop()
        assert calls >= 2
        assert "Collector tick failed" in caplog.text

    @pytest.mark.collectors
    async def test_stop_waits_for_in_flight_tick(self) -> None:
        started = asyncio.Event()
        finished = False

        async def tick() -> None:
            nonlocal finished
            started.set()
            await asyncio.sleep(0.05)
            finished = True

        loop = PeriodicLoop("slow", tick, 10)
        loop.start()
        await started.wait()
        await loop.stop(grace=1)
        assert finished
        assert loop.ticks == 1

    @pytest.mark.collectors
    async def test_stop_cancels_after_grace(self, caplog: pytest.LogCaptureFixture) -> None:
        started = asyncio.Event()
        cancelled = False

        async def tick() -> None:
            nonlocal cancelled
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled = True
                raise

        loop = PeriodicLoop("stuck", tick, 10)
        loop.start()
        await started.wait()
        await loop.stop(grace=0.05)
        assert cancelled
        assert not loop.running
        assert "did not stop within grace period" in caplog.text

    @pytest.mark.collectors
    async def test_stop_before_start_is_noop(self) -> None:
        async def tick() -> None:
            pass

        await PeriodicLoop("idle", tick, 1).stop()

    @pytest.mark.collectors
    async def test_start_twice_keeps_one_task(self) -> None:
        calls = 0

        async def tick() -> None:
            nonlocal calls
            calls += 1

        loop = PeriodicLoop("once", tick, 10)
        loop.start()
        loop.start()
        await asyncio.sleep(0.01)
        await loop.stop()
        assert calls == 1
