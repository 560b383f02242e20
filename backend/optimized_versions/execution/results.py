"""
Execution result models.

Structured representation of one job's process outcome, handed from the
supervisor to its listener before the process handle is released.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    """
    Execution outcome classification.

    SUCCESS: Combiner exited 0
    FAILED: Probe or combiner failed (non-zero exit or launch error)
    CANCELLED: Process was killed on request
    """

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionResult(BaseModel):
    """
    Result of one job's probe + combine run.

    This model is the single source of truth for execution outcome.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str
    """Job the process pair belonged to."""

    status: ExecutionStatus
    """Final execution status."""

    output_path: Optional[str] = None
    """Artifact path (if the combiner succeeded)."""

    size_bytes: Optional[int] = None
    """Artifact size, None if it could not be determined."""

    exit_code: Optional[int] = None
    """Exit code of the last process run, None if it never launched."""

    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    failure_reason: Optional[str] = None
    """Human-readable failure reason (set when status is FAILED)."""

    def duration_seconds(self) -> Optional[float]:
        """Calculate execution duration in seconds."""
        if self.completed_at is None:
            return None
        delta = self.completed_at - self.started_at
        return delta.total_seconds()

    def summary(self) -> str:
        """Human-readable summary of execution result."""
        duration_str = ""
        duration = self.duration_seconds()
        if duration is not None:
            duration_str = f" ({duration:.1f}s)"

        if self.status == ExecutionStatus.SUCCESS:
            return f"SUCCESS{duration_str}: {self.job_id} → {self.output_path}"

        elif self.status == ExecutionStatus.FAILED:
            return f"FAILED{duration_str}: {self.job_id} - {self.failure_reason}"

        return f"CANCELLED{duration_str}: {self.job_id}"
