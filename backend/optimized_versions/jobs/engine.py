"""
Job engine: orchestration façade for optimize jobs.

Ties together the registry (job state), the scheduler (FIFO backlog and
concurrency ceiling) and the FFmpeg supervisor (child processes).

Everything here runs on one asyncio event loop. Registry and backlog
mutations happen only inside these methods or inside the supervisor
listener callbacks, which the supervisor invokes from the same loop,
so there is never more than one writer.

Slot accounting is re-evaluated synchronously after every submission,
completion, failure, cancellation and manual start.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from .models import Job, JobStatus, EngineStatistics, SUPPORTED_EXTENSIONS, DEFAULT_EXTENSION
from .registry import JobRegistry
from .state import ACTIVE_JOB_STATES, is_job_terminal
from ..execution.base import SupervisorListener
from ..execution.commands import CommandTemplate, HardwareAcceleration, get_command_template, get_probe_template
from ..execution.ffmpeg import FFmpegSupervisor
from ..execution.paths import cache_size_bytes, clear_cache, ensure_cache_dir, generate_output_path
from ..execution.progress import format_size
from ..execution.results import ExecutionResult, ExecutionStatus
from ..execution.scheduler import Scheduler

if TYPE_CHECKING:
    from ..execution.progress import ProgressSample

logger = logging.getLogger(__name__)

# Log-friendly source URL length (URLs carry api keys)
URL_LOG_LENGTH = 50


class JobEngine(SupervisorListener):
    """
    Job orchestration engine.

    One instance per service. Created at startup, torn down with
    shutdown(). Multiple instances are fully isolated from each other.
    """

    def __init__(
        self,
        cache_dir: Path,
        max_concurrent: int = 1,
        command_template: Optional[CommandTemplate] = None,
        probe_template: Optional[CommandTemplate] = None,
    ):
        """
        Initialize job engine.

        Args:
            cache_dir: Root directory for artifacts
            max_concurrent: Admission ceiling
            command_template: Job -> combiner argv (defaults to stream copy)
            probe_template: Job -> prober argv (defaults to ffprobe)
        """
        self.cache_dir = ensure_cache_dir(Path(cache_dir))
        self.registry = JobRegistry()
        self.scheduler = Scheduler(max_concurrent=max_concurrent)
        self.supervisor = FFmpegSupervisor(
            command_template=command_template or get_command_template(HardwareAcceleration.NONE),
            probe_template=probe_template or get_probe_template(),
            listener=self,
        )

        # job_id -> supervising task
        self._tasks: Dict[str, asyncio.Task] = {}
        # Jobs whose outcome the supervisor has reported
        self._reported: Set[str] = set()
        self._closed = False

    @property
    def max_concurrent(self) -> int:
        return self.scheduler.max_concurrent

    # =========================================================================
    # Façade
    # =========================================================================

    def submit(
        self,
        input_url: str,
        file_extension: str = DEFAULT_EXTENSION,
        device_id: Optional[str] = None,
        item_id: Optional[str] = None,
        item: Optional[Any] = None,
    ) -> str:
        """
        Create a queued job and admit it if a slot is free.

        Must be called from within the running event loop.

        Returns:
            The new job id

        Raises:
            ValueError: Unsupported file extension or empty URL
            RuntimeError: Engine has been shut down, or no running loop
        """
        if self._closed:
            raise RuntimeError("JobEngine has been shut down")
        asyncio.get_running_loop()

        if not input_url:
            raise ValueError("input_url must not be empty")

        extension = (file_extension or DEFAULT_EXTENSION).lower().lstrip(".")
        if extension not in SUPPORTED_EXTENSIONS:
            raise ValueError(
                f"Unsupported file extension '{file_extension}'. "
                f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
            )

        job_id = str(uuid.uuid4())
        job = Job(
            id=job_id,
            input_url=input_url,
            output_path=str(generate_output_path(self.cache_dir, job_id, extension)),
            file_extension=extension,
            device_id=device_id,
            item_id=item_id,
            item=item,
        )

        self.registry.add_job(job)
        self.scheduler.enqueue_job(job_id)
        logger.info(f"Queueing job {job_id} for URL: {input_url[:URL_LOG_LENGTH]}...")

        self._check_queue()
        return job_id

    def get_status(self, job_id: str) -> Optional[Job]:
        """Snapshot of a job, or None if unknown."""
        job = self.registry.get_job(job_id)
        return job.snapshot() if job else None

    def list_jobs(self, device_id: Optional[str] = None) -> List[Job]:
        """Snapshots of all jobs, newest first, optionally for one device."""
        return [job.snapshot() for job in self.registry.list_jobs(device_id=device_id)]

    def get_queue_position(self, job_id: str) -> int:
        """1-indexed backlog position, -1 if the job is not queued."""
        return self.scheduler.get_queue_position(job_id)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a queued or running job.

        Status flips to CANCELLED before this returns. A running process
        is sent SIGKILL; its reaping happens later and is not awaited.

        Returns:
            False if the job is unknown or already terminal
        """
        logger.info(f"Attempting to cancel job: {job_id}")

        job = self.registry.get_job(job_id)
        if job is None or is_job_terminal(job.status):
            logger.info(f"Job {job_id} not found or already completed")
            return False

        self.scheduler.remove_from_queue(job_id)
        self.registry.transition(job_id, JobStatus.CANCELLED)
        self.supervisor.kill(job_id)

        logger.info(f"Job {job_id} cancelled successfully")
        self._check_queue()
        return True

    def start_now(self, job_id: str) -> bool:
        """
        Move a queued job to the head of the backlog.

        It starts immediately if a slot is free, otherwise it is next.

        Returns:
            False if the job is unknown or not queued
        """
        job = self.registry.get_job(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            logger.info(f"Job {job_id} not found or already started")
            return False

        self.scheduler.promote(job_id)
        self._check_queue()
        return True

    def get_artifact_path(self, job_id: str) -> Optional[str]:
        """Artifact path if the job completed, None otherwise."""
        job = self.registry.get_job(job_id)
        if job and job.status == JobStatus.COMPLETED:
            return job.output_path
        return None

    def retire(self, job_id: str) -> bool:
        """
        Remove a job from the registry.

        Active jobs are cancelled first. Idempotent.

        Returns:
            True if an entry was removed
        """
        job = self.registry.get_job(job_id)
        if job is None:
            return False

        if job.status in ACTIVE_JOB_STATES:
            self.cancel(job_id)

        self.scheduler.remove_from_queue(job_id)
        self._reported.discard(job_id)
        removed = self.registry.remove_job(job_id)
        if removed:
            logger.info(f"Job {job_id} retired")
        return removed

    async def get_statistics(self) -> EngineStatistics:
        """Aggregate counts plus cache size on disk."""
        size = await asyncio.to_thread(cache_size_bytes, self.cache_dir)
        jobs = self.registry.list_jobs()

        return EngineStatistics(
            cache_size=format_size(size),
            cache_size_bytes=size,
            total_transcodes=len(jobs),
            active_jobs=self.registry.count_by_status(JobStatus.RUNNING),
            queued_jobs=self.registry.count_by_status(JobStatus.QUEUED),
            completed_jobs=self.registry.count_by_status(JobStatus.COMPLETED),
            unique_devices=len({job.device_id for job in jobs if job.device_id}),
        )

    async def delete_cache(self) -> int:
        """
        Remove every file under the cache root.

        Artifacts of queued or running jobs are kept. Completed jobs whose
        artifact was removed are retired.

        Returns:
            Number of files removed
        """
        logger.info("Cache deletion request")
        keep = [
            job.output_path
            for job in self.registry.list_jobs()
            if job.status in ACTIVE_JOB_STATES
        ]
        removed = await asyncio.to_thread(clear_cache, self.cache_dir, keep)
        removed_paths = {str(path) for path in removed}

        for job in self.registry.list_jobs():
            if job.status == JobStatus.COMPLETED and job.output_path in removed_paths:
                self.retire(job.id)

        return len(removed)

    async def join(self) -> None:
        """Wait until no supervisor task is in flight (backlog drained or blocked)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Tear down the engine.

        Stops admission, cancels every active job and waits for every
        supervisor task to finish.
        """
        if self._closed:
            return
        self._closed = True

        for job in self.registry.list_jobs():
            if job.status in ACTIVE_JOB_STATES:
                self.cancel(job.id)

        self.supervisor.kill_all()
        await self.join()
        logger.info("JobEngine shut down")

    # =========================================================================
    # Admission
    # =========================================================================

    def _check_queue(self) -> None:
        """Start queued jobs while there are free slots."""
        if self._closed:
            return

        while True:
            admitted = self.scheduler.admit(self.registry.running_count())
            if not admitted:
                return
            for job_id in admitted:
                self._start_job(job_id)

    def _start_job(self, job_id: str) -> None:
        job = self.registry.get_job(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            logger.warning(f"Skipping admission of job {job_id}: no longer queued")
            return

        self.registry.transition(job_id, JobStatus.RUNNING)

        task = self.supervisor.start(job.snapshot())
        self._tasks[job_id] = task
        task.add_done_callback(self._on_task_done)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Supervisor task {task.get_name()} crashed: {exc!r}", exc_info=exc)

    # =========================================================================
    # SupervisorListener
    # =========================================================================

    def job_progress(self, job_id: str, sample: "ProgressSample") -> None:
        self.registry.update_progress(job_id, progress=sample.progress, speed=sample.speed)

    def job_exited(self, job_id: str, result: ExecutionResult) -> None:
        self._reported.add(job_id)

        job = self.registry.get_job(job_id)
        if job is None:
            logger.info(f"Job {job_id} exited after being retired")
            return

        if job.status != JobStatus.RUNNING:
            # Cancelled while the process was being reaped
            logger.debug(f"Job {job_id} exited as {result.status.value}, status already {job.status.value}")
            return

        if result.status == ExecutionStatus.SUCCESS:
            self.registry.transition(job_id, JobStatus.COMPLETED)
            if result.size_bytes is not None:
                self.registry.set_size(job_id, result.size_bytes)
            logger.info(f"Job {job_id} completed. Output: {job.output_path}")
        else:
            self.registry.transition(job_id, JobStatus.FAILED, error=result.failure_reason)
            logger.error(f"Job {job_id} failed: {result.failure_reason}")

    def job_released(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)

        job = self.registry.get_job(job_id)
        if job_id not in self._reported and job is not None and job.status == JobStatus.RUNNING:
            self.registry.transition(
                job_id,
                JobStatus.FAILED,
                error="Supervisor exited without reporting an outcome",
            )
        self._reported.discard(job_id)

        self._check_queue()
