"""
State transition validation for jobs.

Job lifecycle: QUEUED → RUNNING → COMPLETED | FAILED
Cancellation:  QUEUED | RUNNING → CANCELLED

INVARIANT: Terminal job states (COMPLETED, FAILED, CANCELLED) are immutable.
Nothing ever returns to QUEUED once a job has left it.
"""

from typing import FrozenSet, Set, Tuple
from .models import JobStatus
from .errors import InvalidStateTransitionError


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

ACTIVE_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.QUEUED,
    JobStatus.RUNNING,
})


_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    # Admission
    (JobStatus.QUEUED, JobStatus.RUNNING),

    # Process outcome
    (JobStatus.RUNNING, JobStatus.COMPLETED),
    (JobStatus.RUNNING, JobStatus.FAILED),

    # Explicit cancellation
    (JobStatus.QUEUED, JobStatus.CANCELLED),
    (JobStatus.RUNNING, JobStatus.CANCELLED),
}


def is_job_terminal(status: JobStatus) -> bool:
    """
    Check if a job status is terminal (immutable).

    Args:
        status: The job status to check

    Returns:
        True if the status is terminal, False otherwise
    """
    return status in TERMINAL_JOB_STATES


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    Unlike the admission path, same-state "transitions" are rejected:
    every accepted transition must change the status.
    """
    if is_job_terminal(from_status):
        return False

    return (from_status, to_status) in _JOB_TRANSITIONS


def validate_job_transition(job_id: str, from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a job state transition, raising an exception if illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError(job_id, from_status.value, to_status.value)
