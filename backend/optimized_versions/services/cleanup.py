"""
Retention sweep for finished jobs.

Runs on an APScheduler interval. Terminal jobs older than the retention
window lose their artifact (or partial output) and are retired from the
registry. Downloads never delete anything; this sweep is the only
automatic deletion path.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from optimized_versions.execution.paths import remove_file
from optimized_versions.jobs.engine import JobEngine
from optimized_versions.jobs.state import is_job_terminal

logger = logging.getLogger(__name__)


class CleanupService:
    """Periodically removes expired artifacts and retires their jobs."""

    def __init__(self, engine: JobEngine, retention: timedelta, interval: timedelta):
        self.engine = engine
        self.retention = retention
        self.interval = interval
        self._scheduler: Optional[AsyncIOScheduler] = None

    def start(self) -> None:
        """Schedule the sweep on the running event loop."""
        if self._scheduler:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.handle_cleanup,
            IntervalTrigger(seconds=self.interval.total_seconds()),
            id="retention-sweep",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Cleanup scheduler started (every {self.interval}, retention {self.retention})")

    def stop(self) -> None:
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    async def handle_cleanup(self, now: Optional[datetime] = None) -> List[str]:
        """
        Run one sweep.

        Args:
            now: Reference time (defaults to the current time)

        Returns:
            Ids of the jobs that were retired
        """
        logger.info("Running cleanup job...")
        now = now or datetime.now()
        retired: List[str] = []

        for job in self.engine.list_jobs():
            if not is_job_terminal(job.status):
                continue

            finished_at = job.completed_at or job.submitted_at
            if now - finished_at <= self.retention:
                continue

            try:
                await asyncio.to_thread(remove_file, Path(job.output_path))
            except OSError as e:
                logger.error(f"Error removing file {job.output_path}: {e}")
                continue

            if self.engine.retire(job.id):
                retired.append(job.id)

        if retired:
            logger.info(f"Cleanup retired {len(retired)} job(s)")
        return retired
