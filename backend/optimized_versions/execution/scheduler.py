"""
FIFO admission scheduler.

Holds the backlog of job ids waiting for a process slot and decides
which of them may start, given how many jobs are already running.

Design rules:
- No prioritization beyond arrival order
- No preemption
- Ceiling is a fixed positive integer chosen at startup (default 1)
- Re-evaluation happens synchronously inside the operation that freed
  or consumed a slot; nothing polls

The scheduler does not know about job status. The engine passes in the
current running count and starts whatever admit() hands back.
"""

import logging
from collections import deque
from typing import Deque, List

logger = logging.getLogger(__name__)


class Scheduler:
    """
    FIFO backlog with a concurrency ceiling.

    Usage:
        scheduler = Scheduler(max_concurrent=2)
        scheduler.enqueue_job(job_id)
        for job_id in scheduler.admit(running_count):
            start(job_id)
    """

    def __init__(self, max_concurrent: int = 1):
        """
        Initialize scheduler.

        Args:
            max_concurrent: Maximum jobs allowed to run at once

        Raises:
            ValueError: If max_concurrent is not a positive integer
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        self.max_concurrent = max_concurrent
        self._job_queue: Deque[str] = deque()

    @property
    def backlog_size(self) -> int:
        """Number of jobs waiting for a slot."""
        return len(self._job_queue)

    def enqueue_job(self, job_id: str) -> int:
        """
        Add a job to the back of the FIFO queue.

        Returns:
            Position in queue (1-indexed, 1 = will execute next)
        """
        if job_id in self._job_queue:
            position = self.get_queue_position(job_id)
            logger.debug(f"[Scheduler] Job {job_id} already in queue at position {position}")
            return position

        self._job_queue.append(job_id)
        position = len(self._job_queue)
        logger.info(f"[Scheduler] Job {job_id} enqueued at position {position}")
        return position

    def get_queue_position(self, job_id: str) -> int:
        """
        Get the current queue position for a job.

        Returns:
            Position (1-indexed), -1 if not in queue
        """
        try:
            return list(self._job_queue).index(job_id) + 1
        except ValueError:
            return -1

    def get_queued_job_ids(self) -> List[str]:
        """Get list of all queued job IDs in FIFO order."""
        return list(self._job_queue)

    def remove_from_queue(self, job_id: str) -> bool:
        """
        Remove a job from the queue (e.g., on cancellation).

        Returns:
            True if job was in queue and removed
        """
        if job_id in self._job_queue:
            self._job_queue.remove(job_id)
            logger.info(f"[Scheduler] Job {job_id} removed from queue")
            return True
        return False

    def promote(self, job_id: str) -> bool:
        """
        Move a queued job to the head of the queue.

        Used for manual starts. The ceiling still applies: the job starts
        on the next admit() that finds a free slot.

        Returns:
            True if the job was in the queue
        """
        if job_id not in self._job_queue:
            return False

        self._job_queue.remove(job_id)
        self._job_queue.appendleft(job_id)
        logger.info(f"[Scheduler] Job {job_id} promoted to front of queue")
        return True

    def admit(self, running_count: int) -> List[str]:
        """
        Pop as many jobs as there are free slots.

        Args:
            running_count: Jobs currently holding a slot

        Returns:
            Job ids to start, oldest first
        """
        admitted: List[str] = []
        while running_count + len(admitted) < self.max_concurrent and self._job_queue:
            job_id = self._job_queue.popleft()
            admitted.append(job_id)
            logger.info(f"[Scheduler] Job {job_id} acquired execution slot")
        return admitted
