"""Background maintenance jobs for the memory engine.

Two interval jobs run on an APScheduler AsyncIOScheduler:
- session sweep: reclaims working-memory sessions idle past the timeout
- episodic purge: hard deletes conversation records past their maximum age

Jobs log their outcome and never raise into the scheduler.
"""

from __future__ import annotations

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from finmem.memory.episodic import EpisodicMemoryStore
from finmem.memory.working import WorkingMemoryStore
from finmem.monitoring.metrics import BACKGROUND_TASKS

logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "finmem_session_sweep"
PURGE_JOB_ID = "finmem_episodic_purge"


class MemoryScheduler:
    """
    Usage:
        scheduler = MemoryScheduler(working, episodic)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        working: WorkingMemoryStore,
        episodic: EpisodicMemoryStore,
        sweep_interval_seconds: int = 300,
        purge_interval_hours: int = 24,
    ) -> None:
        self.working = working
        self.episodic = episodic
        self.sweep_interval_seconds = sweep_interval_seconds
        self.purge_interval_hours = purge_interval_hours
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start the scheduler and register both jobs."""
        if self._is_running:
            logger.warning("scheduler_already_running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.sweep_sessions,
            trigger=IntervalTrigger(seconds=self.sweep_interval_seconds),
            id=SWEEP_JOB_ID,
            name="finmem: session sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.purge_episodic,
            trigger=IntervalTrigger(hours=self.purge_interval_hours),
            id=PURGE_JOB_ID,
            name="finmem: episodic purge",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._is_running = True
        logger.info(
            "scheduler_started",
            sweep_interval_seconds=self.sweep_interval_seconds,
            purge_interval_hours=self.purge_interval_hours,
        )

    async def stop(self) -> None:
        """Stop the scheduler without waiting for a running job."""
        if not self._is_running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._is_running = False
        logger.info("scheduler_stopped")

    async def sweep_sessions(self) -> int:
        try:
            reclaimed = await self.working.sweep_expired()
        except Exception as e:
            BACKGROUND_TASKS.labels(status="error").inc()
            logger.error("session_sweep_failed", error=str(e), error_type=type(e).__name__)
            return 0
        BACKGROUND_TASKS.labels(status="success").inc()
        logger.debug("session_sweep_completed", reclaimed=len(reclaimed))
        return len(reclaimed)

    async def purge_episodic(self) -> int:
        try:
            purged = await self.episodic.purge_expired()
        except Exception as e:
            BACKGROUND_TASKS.labels(status="error").inc()
            logger.error("episodic_purge_failed", error=str(e), error_type=type(e).__name__)
            return 0
        BACKGROUND_TASKS.labels(status="success").inc()
        logger.debug("episodic_purge_completed", purged=purged)
        return purged
