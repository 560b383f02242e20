"""
FFmpeg process supervisor.

Drives one job end-to-end as two ordered child processes:
1. ffprobe → total duration (seconds)
2. ffmpeg  → combined artifact, stderr parsed for progress

Design rules:
- At most one child process per job at a time, tracked in a side table
  keyed by job id (never stored on the Job itself)
- Non-zero exit code or launch failure = FAILED
- Probe failure = FAILED, combiner never started
- Cancellation is SIGKILL, idempotent, and drops the handle immediately
- Outcome is reported before the handle is released
- job_released is reported exactly once per job, on every exit path

All child I/O goes through asyncio so the coordinating event loop is
never blocked waiting on a process.
"""

import asyncio
import codecs
import logging
import os
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Optional, Set, Tuple, TYPE_CHECKING

from .base import SupervisorListener
from .commands import CommandTemplate
from .errors import ExecutionError, ProbeFailedError, CombineFailedError
from .progress import parse_progress_line, split_lines
from .results import ExecutionResult, ExecutionStatus

if TYPE_CHECKING:
    from ..jobs.models import Job

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

# Lines of combiner stderr kept for failure reports
STDERR_TAIL_LINES = 20


class FFmpegSupervisor:
    """
    Supervises probe + combine processes for any number of jobs.

    One supervisor instance is owned by one JobEngine. Each admitted job
    gets its own run() coroutine; the side tables below are the only
    shared state and are touched only from the event loop.
    """

    def __init__(
        self,
        command_template: CommandTemplate,
        probe_template: CommandTemplate,
        listener: SupervisorListener,
    ):
        """
        Args:
            command_template: Job -> ffmpeg argument list
            probe_template: Job -> ffprobe argument list
            listener: Receives progress and outcome events
        """
        self._command_template = command_template
        self._probe_template = probe_template
        self._listener = listener

        # job_id -> live child process (probe or combiner)
        self._active_processes: Dict[str, asyncio.subprocess.Process] = {}
        # job_id -> probed duration in seconds (None = unknown)
        self._durations: Dict[str, Optional[float]] = {}
        # Jobs killed on request; their exit is not a failure
        self._cancelled_jobs: Set[str] = set()
        # Jobs with a run() in flight
        self._supervised: Set[str] = set()

    # =========================================================================
    # Introspection
    # =========================================================================

    def has_process(self, job_id: str) -> bool:
        """True while a child process is tracked for the job."""
        return job_id in self._active_processes

    def get_duration(self, job_id: str) -> Optional[float]:
        """Probed duration for a running job, None if unknown or not probed."""
        return self._durations.get(job_id)

    @property
    def supervised_count(self) -> int:
        """Number of jobs with a run in flight."""
        return len(self._supervised)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, job: "Job") -> asyncio.Task:
        """
        Schedule run() for a job on the running loop.

        The job counts as supervised from this call on, so a kill() that
        lands before the task first runs still prevents any spawn.
        """
        self._supervised.add(job.id)
        return asyncio.get_running_loop().create_task(self.run(job), name=f"job-{job.id}")

    async def run(self, job: "Job") -> None:
        """
        Run probe then combine for a job and report the outcome.

        Never raises for tool failures; those become a FAILED result.
        """
        job_id = job.id
        started_at = datetime.now()
        self._supervised.add(job_id)

        try:
            try:
                if job_id in self._cancelled_jobs:
                    raise ExecutionError(job_id, reason="cancelled before launch")
                duration = await self.probe_duration(job)

                if job_id in self._cancelled_jobs:
                    result = self._cancelled_result(job_id, started_at)
                else:
                    exit_code, stderr_tail = await self._combine(job, duration)
                    result = self._result_for_exit(job, exit_code, stderr_tail, started_at)

            except ExecutionError as e:
                if job_id in self._cancelled_jobs:
                    result = self._cancelled_result(job_id, started_at)
                else:
                    logger.error(f"[FFmpeg] {e}")
                    result = ExecutionResult(
                        job_id=job_id,
                        status=ExecutionStatus.FAILED,
                        exit_code=e.exit_code,
                        failure_reason=str(e),
                        started_at=started_at,
                        completed_at=datetime.now(),
                    )

            logger.info(f"[FFmpeg] {result.summary()}")
            self._listener.job_exited(job_id, result)

        finally:
            self._release(job_id)

    async def probe_duration(self, job: "Job") -> Optional[float]:
        """
        Probe the job's input for its total duration.

        Returns:
            Duration in seconds, or None if the prober succeeded but
            reported no usable number (live sources print N/A)

        Raises:
            ProbeFailedError: Prober exited non-zero or could not launch
        """
        cmd = self._probe_template(job)
        logger.debug(f"[FFmpeg] Probing job {job.id}: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise ProbeFailedError(job.id, reason=f"could not launch {cmd[0]}: {e}") from e

        self._track(job.id, process)
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            # Handle stays tracked until the outcome has been reported
            raise ProbeFailedError(
                job.id,
                exit_code=process.returncode,
                stderr=stderr.decode("utf-8", errors="replace").strip(),
            )

        self._active_processes.pop(job.id, None)

        raw = stdout.decode("utf-8", errors="replace").strip()
        try:
            duration: Optional[float] = float(raw)
        except ValueError:
            logger.warning(f"[FFmpeg] Job {job.id}: unusable duration {raw!r}, progress will not be reported")
            duration = None

        if duration is not None and duration <= 0:
            duration = None

        self._durations[job.id] = duration
        logger.info(f"[FFmpeg] Job {job.id} duration: {duration}")
        return duration

    def kill(self, job_id: str) -> bool:
        """
        Hard-kill the job's current process.

        Idempotent: killing an exited, already-killed, or unknown job is a
        no-op. The handle is dropped before this returns.

        Returns:
            True if a live process was signalled
        """
        if job_id not in self._supervised:
            return False

        self._cancelled_jobs.add(job_id)
        process = self._active_processes.pop(job_id, None)
        if process is None or process.returncode is not None:
            return False

        logger.info(f"[FFmpeg] Sending SIGKILL to PID {process.pid} for job {job_id}")
        try:
            process.kill()
        except ProcessLookupError:
            # Already reaped
            return False
        return True

    def kill_all(self) -> None:
        """Kill every supervised job's process (shutdown)."""
        for job_id in list(self._supervised):
            self.kill(job_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _track(self, job_id: str, process: asyncio.subprocess.Process) -> None:
        """Register a freshly spawned process, killing it if cancel raced the spawn."""
        self._active_processes[job_id] = process
        if job_id in self._cancelled_jobs:
            self.kill(job_id)

    async def _combine(self, job: "Job", duration: Optional[float]) -> Tuple[int, Deque[str]]:
        """
        Spawn the combiner and stream its stderr into progress events.

        Returns:
            Tuple of (exit code, last stderr lines)

        Raises:
            CombineFailedError: Combiner could not launch
        """
        cmd = self._command_template(job)
        logger.info(f"[FFmpeg] Executing: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise CombineFailedError(job.id, reason=f"could not launch {cmd[0]}: {e}") from e

        self._track(job.id, process)
        logger.info(f"[FFmpeg] Started PID {process.pid} for job {job.id}")

        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        await self._read_progress(job.id, process.stderr, duration, stderr_tail)
        exit_code = await process.wait()

        logger.info(f"[FFmpeg] PID {process.pid} exited with code {exit_code}")
        return exit_code, stderr_tail

    async def _read_progress(
        self,
        job_id: str,
        stream: asyncio.StreamReader,
        duration: Optional[float],
        stderr_tail: Deque[str],
    ) -> None:
        """Read stderr until EOF, reporting every parsed progress line."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            lines, buffer = split_lines(buffer, decoder.decode(chunk))
            for line in lines:
                self._handle_line(job_id, line, duration, stderr_tail)

        buffer += decoder.decode(b"", final=True)
        if buffer.strip():
            self._handle_line(job_id, buffer, duration, stderr_tail)

    def _handle_line(
        self,
        job_id: str,
        line: str,
        duration: Optional[float],
        stderr_tail: Deque[str],
    ) -> None:
        stderr_tail.append(line)
        sample = parse_progress_line(line, duration)
        if sample is not None:
            logger.debug(f"[FFmpeg] Job {job_id} progress={sample.progress} speed={sample.speed}")
            self._listener.job_progress(job_id, sample)

    def _result_for_exit(
        self,
        job: "Job",
        exit_code: int,
        stderr_tail: Deque[str],
        started_at: datetime,
    ) -> ExecutionResult:
        """Classify the combiner's exit."""
        if job.id in self._cancelled_jobs:
            return self._cancelled_result(job.id, started_at, exit_code)

        if exit_code != 0:
            error = CombineFailedError(
                job.id,
                exit_code=exit_code,
                stderr="\n".join(stderr_tail),
            )
            logger.error(f"[FFmpeg] {error}")
            return ExecutionResult(
                job_id=job.id,
                status=ExecutionStatus.FAILED,
                exit_code=exit_code,
                failure_reason=str(error),
                started_at=started_at,
                completed_at=datetime.now(),
            )

        # The artifact exists even if size bookkeeping fails
        size_bytes: Optional[int] = None
        try:
            size_bytes = os.path.getsize(job.output_path)
        except OSError as e:
            logger.warning(f"[FFmpeg] Could not stat output for job {job.id}: {e}")

        return ExecutionResult(
            job_id=job.id,
            status=ExecutionStatus.SUCCESS,
            output_path=job.output_path,
            size_bytes=size_bytes,
            exit_code=exit_code,
            started_at=started_at,
            completed_at=datetime.now(),
        )

    @staticmethod
    def _cancelled_result(
        job_id: str,
        started_at: datetime,
        exit_code: Optional[int] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            job_id=job_id,
            status=ExecutionStatus.CANCELLED,
            exit_code=exit_code,
            started_at=started_at,
            completed_at=datetime.now(),
        )

    def _release(self, job_id: str) -> None:
        """Drop every trace of the job and notify the listener once."""
        self._active_processes.pop(job_id, None)
        self._durations.pop(job_id, None)
        self._cancelled_jobs.discard(job_id)
        self._supervised.discard(job_id)
        self._listener.job_released(job_id)
