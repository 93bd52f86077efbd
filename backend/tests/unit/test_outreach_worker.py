"""
Unit Tests for the Outreach Scheduler
Timer lifecycle, tick isolation and stats
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from outreach.domain.interfaces.tracking_store import TrackingStoreError
from outreach.domain.services.progression_engine import TickSummary
from outreach.workers.outreach_worker import OutreachScheduler


@pytest.fixture
def engine(start_time):
    engine = MagicMock()
    engine.tick = AsyncMock(return_value=TickSummary(started_at=start_time, calls_processed=2))
    engine.get_stats.return_value = {
        "calls_processed": 2,
        "emails_processed": 0,
        "record_errors": 0,
        "in_flight": 0,
    }
    return engine


@pytest.fixture
def store():
    store = MagicMock()
    store.ensure_indexes = AsyncMock()
    return store


@pytest.fixture
def scheduler(engine, store) -> OutreachScheduler:
    return OutreachScheduler(engine, store, interval_seconds=0.01, startup_delay_seconds=0)


class TestTick:
    """Single ticks"""

    @pytest.mark.asyncio
    async def test_tick_records_summary(self, scheduler, engine, start_time):
        summary = await scheduler.tick(start_time)

        assert summary.calls_processed == 2
        engine.tick.assert_awaited_once_with(start_time)
        stats = scheduler.get_stats()
        assert stats["ticks"] == 1
        assert stats["last_tick_at"] == start_time.isoformat()

    @pytest.mark.asyncio
    async def test_tick_error_is_contained(self, scheduler, engine):
        engine.tick.side_effect = RuntimeError("engine exploded")

        assert await scheduler.tick() is None
        stats = scheduler.get_stats()
        assert stats["tick_errors"] == 1
        assert stats["last_tick_at"] is None


class TestLifecycle:
    """Start and stop"""

    @pytest.mark.asyncio
    async def test_start_runs_ticks_until_stopped(self, scheduler, engine, store):
        await scheduler.start()
        assert scheduler.running is True

        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        assert engine.tick.await_count >= 1
        store.ensure_indexes.assert_awaited_once()

        ticks = engine.tick.await_count
        await asyncio.sleep(0.03)
        assert engine.tick.await_count == ticks

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, scheduler, store):
        await scheduler.start()
        timer = scheduler._timer_task
        await scheduler.start()

        assert scheduler._timer_task is timer
        store.ensure_indexes.assert_awaited_once()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_tick(self, engine, store, start_time):
        finished = asyncio.Event()

        async def slow_tick(now=None):
            await asyncio.sleep(0.05)
            finished.set()
            return TickSummary(started_at=start_time)

        engine.tick = slow_tick
        scheduler = OutreachScheduler(engine, store, interval_seconds=10, startup_delay_seconds=0)

        await scheduler.start()
        await asyncio.sleep(0.01)
        assert scheduler.get_stats()["running_ticks"] == 1

        await scheduler.stop(wait=True)

        assert finished.is_set()
        assert scheduler.get_stats()["running_ticks"] == 0

    @pytest.mark.asyncio
    async def test_unreachable_store_prevents_start(self, scheduler, store):
        store.ensure_indexes.side_effect = TrackingStoreError("table missing")

        with pytest.raises(TrackingStoreError):
            await scheduler.start()
        assert scheduler.running is False

    def test_stats_include_engine_counters(self, scheduler):
        stats = scheduler.get_stats()
        assert stats["running"] is False
        assert stats["interval_seconds"] == 0.01
        assert stats["calls_processed"] == 2
        assert stats["in_flight"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
