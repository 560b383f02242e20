"""
In-memory job registry.

The registry is the single source of truth for job state:
- Job storage and retrieval by ID
- Listing jobs, optionally filtered by device
- Status transitions (the only place status is mutated)
- Progress bookkeeping

Entries are removed only by an explicit remove_job() call.
Nothing here evicts jobs on a timer.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional
from .models import Job, JobStatus
from .state import validate_job_transition
from .errors import JobNotFoundError

logger = logging.getLogger(__name__)

# Mid-stream samples never report completion
MAX_RUNNING_PROGRESS = 99.9


class JobRegistry:
    """
    In-memory registry for job tracking.

    Owned by a single JobEngine; not shared between engines.
    """

    def __init__(self):
        # job_id -> Job
        self._jobs: Dict[str, Job] = {}

    def add_job(self, job: Job) -> None:
        """
        Add a job to the registry.

        Raises:
            ValueError: If a job with the same ID already exists
        """
        if job.id in self._jobs:
            raise ValueError(f"Job with ID '{job.id}' already exists")

        self._jobs[job.id] = job

    def get_job(self, job_id: str) -> Optional[Job]:
        """
        Retrieve the live job entry by ID.

        The returned object is the registry's own entry; callers outside
        the engine should use Job.snapshot() before handing it out.
        """
        return self._jobs.get(job_id)

    def get_job_or_raise(self, job_id: str) -> Job:
        """
        Retrieve a job by ID, raising an exception if not found.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, device_id: Optional[str] = None) -> List[Job]:
        """
        List jobs in the registry.

        Args:
            device_id: Only return jobs submitted for this device

        Returns:
            Jobs ordered by submission time (newest first)
        """
        jobs = [
            job for job in self._jobs.values()
            if device_id is None or job.device_id == device_id
        ]
        jobs.sort(key=lambda j: j.submitted_at, reverse=True)
        return jobs

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a job from the registry.

        Returns:
            True if an entry was removed, False if the id was unknown
        """
        return self._jobs.pop(job_id, None) is not None

    def count(self) -> int:
        """Total number of jobs in the registry."""
        return len(self._jobs)

    def count_by_status(self, status: JobStatus) -> int:
        """Number of jobs currently in the given status."""
        return sum(1 for job in self._jobs.values() if job.status == status)

    def running_count(self) -> int:
        """Number of jobs currently holding a process slot."""
        return self.count_by_status(JobStatus.RUNNING)

    # =========================================================================
    # Mutations
    # =========================================================================

    def transition(self, job_id: str, to_status: JobStatus, error: Optional[str] = None) -> Job:
        """
        Move a job to a new status.

        Applies the progress rules that go with each status:
        COMPLETED snaps progress to 100, FAILED resets it to 0.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransitionError: If the transition is not allowed
        """
        job = self.get_job_or_raise(job_id)
        validate_job_transition(job_id, job.status, to_status)

        old_status = job.status
        job.status = to_status
        now = datetime.now()

        if to_status == JobStatus.RUNNING:
            job.started_at = now
        else:
            job.completed_at = now

        if to_status == JobStatus.COMPLETED:
            job.progress = 100.0
        elif to_status == JobStatus.FAILED:
            job.progress = 0.0
            job.error = error

        logger.info(f"[LIFECYCLE] Job {job_id} transitioned: {old_status.value} -> {to_status.value}")
        return job

    def update_progress(
        self,
        job_id: str,
        progress: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> bool:
        """
        Record a progress sample for a running job.

        Progress is clamped to [0, 99.9] and never regresses.
        Samples for unknown or non-running jobs are dropped.

        Returns:
            True if the sample was applied
        """
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False

        if progress is not None:
            clamped = min(max(progress, 0.0), MAX_RUNNING_PROGRESS)
            job.progress = max(job.progress, clamped)
        if speed is not None:
            job.speed = speed
        return True

    def set_size(self, job_id: str, size_bytes: int) -> None:
        """Record the artifact size for a completed job."""
        job = self.get_job_or_raise(job_id)
        job.size_bytes = size_bytes
