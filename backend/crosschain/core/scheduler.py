"""
Background task scheduler.

Runs the engine's periodic jobs (reserve monitoring, graduation
monitoring, price-deviation monitoring, stale request reconciliation) on
independent interval timers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SchedulerManager:
    """
    Centralized scheduler for background tasks.

    Jobs coalesce missed runs and never run more than one instance at a
    time, so a slow tick delays its own next run instead of stacking up.
    """

    def __init__(self, misfire_grace_seconds: int = 30):
        """Initialize the scheduler manager."""
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_seconds,
            }
        )
        self._running = False
        logger.info("Scheduler manager initialized")

    async def start(self) -> None:
        """Start processing scheduled jobs."""
        if not self._running:
            self.scheduler.start()
            self._running = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler, waiting for running jobs to complete."""
        if self._running:
            self.scheduler.shutdown(wait=True)
            self._running = False
            logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        id: str,
        seconds: int,
        name: Optional[str] = None,
        run_immediately: bool = False,
    ) -> None:
        """
        Add an interval job to the scheduler.

        Args:
            func: Coroutine function to execute
            id: Unique job identifier
            seconds: Interval between runs
            name: Human-readable job name
            run_immediately: Fire once at start instead of after the first interval
        """
        trigger_args: Dict[str, Any] = {}
        if run_immediately:
            trigger_args["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=id,
            name=name or id,
            replace_existing=True,
            **trigger_args
        )
        logger.info(f"Scheduled job added: {name or id} (every {seconds}s)")

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a scheduled job.

        Returns:
            bool: True if removed, False if not found
        """
        if self.scheduler.get_job(job_id) is None:
            logger.warning(f"Job not found: {job_id}")
            return False
        self.scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")
        return True

    def get_jobs(self) -> Dict[str, Dict[str, Any]]:
        """
        Get information about all scheduled jobs.

        Returns:
            Dict mapping job IDs to job information
        """
        jobs = {}
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs[job.id] = {
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
                "max_instances": job.max_instances,
            }
        return jobs

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running


__all__ = ["SchedulerManager"]
