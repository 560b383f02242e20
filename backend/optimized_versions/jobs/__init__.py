"""
Job engine: orchestration for optimize jobs.

This package manages job lifecycle and state. It does not spawn
processes itself; that is the execution package's job.

Included:
- Job data model and status state machine
- In-memory job registry
- JobEngine façade (submit, inspect, cancel, start, retire)
"""

from .errors import (
    JobError,
    JobNotFoundError,
    InvalidStateTransitionError,
)
from .models import (
    JobStatus,
    Job,
    EngineStatistics,
    SUPPORTED_EXTENSIONS,
)
from .state import (
    can_transition_job,
    is_job_terminal,
)
from .registry import JobRegistry
from .engine import JobEngine

__all__ = [
    # Errors
    "JobError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    # Models
    "JobStatus",
    "Job",
    "EngineStatistics",
    "SUPPORTED_EXTENSIONS",
    # State validation
    "can_transition_job",
    "is_job_terminal",
    # Registry
    "JobRegistry",
    # Engine
    "JobEngine",
]
