"""
Execution-specific errors.

All errors are non-fatal to the application.
They mark one job as failed; the service keeps running and the
scheduler moves on to the next queued job.
"""

from typing import Optional


class ExecutionError(Exception):
    """
    Base exception for execution failures.

    Carries the job id, the tool's exit code (None when the tool could
    not be launched at all) and the tail of its diagnostic output.
    """

    stage = "execution"

    def __init__(
        self,
        job_id: str,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.job_id = job_id
        self.exit_code = exit_code
        self.stderr = stderr
        self.reason = reason

        if reason:
            message = f"{self.stage} failed for job {job_id}: {reason}"
        elif exit_code is not None:
            message = f"{self.stage} failed for job {job_id} (exit code: {exit_code})"
        else:
            message = f"{self.stage} failed for job {job_id}"

        # The tool's own last word is usually the actual cause
        detail = self.last_stderr_line()
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def last_stderr_line(self) -> Optional[str]:
        """Last non-empty line of the tool's diagnostic output, if any."""
        lines = [line.strip() for line in (self.stderr or "").splitlines() if line.strip()]
        return lines[-1] if lines else None


class ProbeFailedError(ExecutionError):
    """
    Duration probe failed.

    Raised when the prober exits non-zero or cannot be launched.
    The combiner is never started after this.
    """

    stage = "Probe"


class CombineFailedError(ExecutionError):
    """
    Combiner failed.

    Raised when the combiner exits non-zero or cannot be launched.
    A partial output file may remain on disk.
    """

    stage = "Combine"
