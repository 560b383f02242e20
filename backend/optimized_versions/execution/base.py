"""
Supervisor listener interface.

The supervisor never touches the job registry directly. It reports
through a listener, and the listener (the JobEngine) applies every
change on the same event loop that handles submissions and
cancellations.

Call order per job:
    job_progress*  →  job_exited?  →  job_released

job_exited is skipped only when the supervising task itself is torn
down mid-run. job_released is always called exactly once.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .progress import ProgressSample
    from .results import ExecutionResult


class SupervisorListener(ABC):
    """Receives progress and outcome events from an FFmpegSupervisor."""

    @abstractmethod
    def job_progress(self, job_id: str, sample: "ProgressSample") -> None:
        """
        A progress line was parsed from the combiner.

        Args:
            job_id: Job whose combiner produced the line
            sample: Parsed progress and/or speed
        """
        pass

    @abstractmethod
    def job_exited(self, job_id: str, result: "ExecutionResult") -> None:
        """
        The job's last process terminated (or never launched).

        Called while the process handle is still tracked, so terminal
        status is recorded before the handle disappears.
        """
        pass

    @abstractmethod
    def job_released(self, job_id: str) -> None:
        """The supervisor dropped all bookkeeping for the job."""
        pass
