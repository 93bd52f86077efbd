"""
Outreach Worker
Recurring scheduler that drives the campaign progression engine

Run as separate process:
    python -m outreach.workers.outreach_worker
"""
import asyncio
import logging
import os
import signal
from datetime import datetime
from typing import Awaitable, Callable, Optional, Set

from dotenv import load_dotenv

from outreach.domain.interfaces.tracking_store import TrackingStore
from outreach.domain.services.progression_engine import CampaignProgressionEngine, TickSummary

logger = logging.getLogger(__name__)


class OutreachScheduler:
    """
    Fixed-interval tick timer.

    Each tick runs as its own task so a slow tick never delays the timer;
    overlapping ticks are safe because records are claimed in the store.
    Stopping cancels the timer only, running ticks finish their attempts.
    """

    def __init__(
        self,
        engine: CampaignProgressionEngine,
        store: TrackingStore,
        interval_seconds: float = 60.0,
        startup_delay_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.engine = engine
        self.store = store
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._sleep = sleep

        self.running = False
        self._initialized = False
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

        # Stats
        self._ticks = 0
        self._tick_errors = 0
        self._last_tick_at: Optional[datetime] = None
        self._last_summary: Optional[TickSummary] = None

    async def initialize(self) -> None:
        """Make sure storage is ready before the first tick."""
        logger.info("Initializing Outreach Scheduler...")
        await self.store.ensure_indexes()
        self._initialized = True
        logger.info("Outreach Scheduler initialized")

    async def tick(self, now: Optional[datetime] = None) -> Optional[TickSummary]:
        """Run one tick; errors are logged and never propagate."""
        self._ticks += 1
        try:
            summary = await self.engine.tick(now)
        except Exception as e:
            self._tick_errors += 1
            logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            return None

        self._last_tick_at = summary.started_at
        self._last_summary = summary
        return summary

    async def start(self) -> None:
        if self.running:
            logger.info("Outreach Scheduler already running")
            return
        if not self._initialized:
            await self.initialize()

        self.running = True
        self._timer_task = asyncio.create_task(self._run())
        logger.info(
            f"Outreach Scheduler started (interval {self.interval_seconds}s, "
            f"startup delay {self.startup_delay_seconds}s)"
        )

    async def _run(self) -> None:
        await self._sleep(self.startup_delay_seconds)
        while self.running:
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await self._sleep(self.interval_seconds)

    async def stop(self, wait: bool = True) -> None:
        """
        Stop the timer.

        Args:
            wait: Wait for ticks already running to finish
        """
        self.running = False

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
            logger.info("Outreach Scheduler stopped")

        if wait and self._tick_tasks:
            logger.info(f"Waiting for {len(self._tick_tasks)} running ticks to finish")
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)

    def get_stats(self) -> dict:
        """Get scheduler statistics."""
        engine_stats = self.engine.get_stats()
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "ticks": self._ticks,
            "tick_errors": self._tick_errors,
            "running_ticks": len(self._tick_tasks),
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "calls_processed": engine_stats["calls_processed"],
            "emails_processed": engine_stats["emails_processed"],
            "record_errors": engine_stats["record_errors"],
            "in_flight": engine_stats["in_flight"],
        }


async def main():
    """Entry point for running the outreach scheduler as a separate process."""
    from outreach.container import build_container

    container = build_container()
    strict = os.getenv("ENVIRONMENT", "development") == "production"
    await container.initialize(strict=strict)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await container.scheduler.start()
        await stop_event.wait()
    finally:
        await container.shutdown()
        stats = container.scheduler.get_stats()
        logger.info(
            f"Outreach Worker shutdown complete. Ticks: {stats['ticks']}, "
            f"calls: {stats['calls_processed']}, emails: {stats['emails_processed']}"
        )


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    asyncio.run(main())
