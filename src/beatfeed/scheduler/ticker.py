"""In-process tick that triggers due scheduler runs.

This module wraps APScheduler with a single interval job. Each tick asks the
import scheduler whether a run is due; the import scheduler itself decides
and guards against overlapping runs.
"""

import logging
from typing import Any

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import SchedulerConfig
from .facade import SchedulerHolder

logger = logging.getLogger(__name__)

TICK_JOB_ID = "scheduler-tick"


class SchedulerTicker:
    """Lifecycle wrapper for the APScheduler instance driving ticks.

    Attributes:
        holder: Access point for the shared import scheduler.
        settings: Scheduler configuration settings.
    """

    def __init__(self, holder: SchedulerHolder, settings: SchedulerConfig) -> None:
        """Initialize the ticker.

        Args:
            holder: Access point for the shared import scheduler.
            settings: Scheduler configuration settings.
        """
        self.holder = holder
        self.settings = settings
        self._started = False

        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": settings.misfire_grace_time,
            },
            timezone="UTC",
        )

        logger.info(
            f"Scheduler ticker initialized (interval={settings.tick_interval_seconds}s, "
            f"misfire_grace={settings.misfire_grace_time}s)"
        )

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    async def tick(self) -> None:
        """Run the scheduler if it is due. Errors are logged so the tick keeps firing."""
        try:
            scheduler = await self.holder.get()
            summary = await scheduler.check_and_run()
        except Exception as e:
            logger.exception(f"Scheduler tick failed: {e}")
            return

        if summary is not None:
            logger.info(
                f"Tick completed scheduled run: {summary.downloaded} downloaded, "
                f"{summary.duplicates} duplicates, {summary.failed} failed"
            )

    async def start(self) -> None:
        """Register the tick job and start the scheduler.

        Must be called from within a running event loop.
        """
        if self._started:
            logger.warning("Scheduler ticker already started")
            return

        self._scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=self.settings.tick_interval_seconds,
            id=TICK_JOB_ID,
            name="Scheduler tick",
            replace_existing=True,
        )
        self._scheduler.start(paused=False)
        self._started = True
        logger.info("Scheduler ticker started")

    async def shutdown(self, wait: bool = False) -> None:
        """Stop the ticker."""
        if not self._started:
            logger.warning("Scheduler ticker not running, nothing to shutdown")
            return

        self._scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Scheduler ticker shutdown complete")

    def is_running(self) -> bool:
        return self._started and self._scheduler.running

    def get_status(self) -> dict[str, Any]:
        """Ticker status for health checks."""
        if not self._started:
            return {"status": "stopped"}

        job = self._scheduler.get_job(TICK_JOB_ID)
        next_tick = job.next_run_time if job else None
        return {
            "status": "running" if self._scheduler.running else "paused",
            "interval_seconds": self.settings.tick_interval_seconds,
            "next_tick": next_tick.isoformat() if next_tick else None,
        }
