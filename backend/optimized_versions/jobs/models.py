"""
Job data model.

A job is one request to materialize a combined media artifact from an
HLS source. Jobs are tracked in memory only.

All models use Pydantic for validation.
State transitions are validated externally (see state.py).
Wire format is camelCase to match what clients already consume.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """
    Job-level status.

    queued -> running -> completed | failed
    queued | running -> cancelled
    """

    QUEUED = "queued"  # Waiting in the backlog for a process slot
    RUNNING = "running"  # Probe or combiner is executing
    COMPLETED = "completed"  # Artifact produced (terminal)
    FAILED = "failed"  # Probe or combiner failed (terminal)
    CANCELLED = "cancelled"  # Cancelled by caller (terminal)


# Container extensions a caller may request for the artifact
SUPPORTED_EXTENSIONS = ("mp4", "mkv", "mov", "ts")

DEFAULT_EXTENSION = "mp4"


class Job(BaseModel):
    """
    A single optimize request and its current state.

    The registry owns the authoritative copy. Everything handed out to
    callers is a snapshot (see snapshot()).
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    # State
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    speed: Optional[float] = None
    error: Optional[str] = None

    # Source and artifact
    input_url: str
    output_path: str
    file_extension: str = DEFAULT_EXTENSION
    size_bytes: Optional[int] = Field(default=None, alias="size")

    # Caller correlation, passed through verbatim
    device_id: Optional[str] = None
    item_id: Optional[str] = None
    item: Optional[Any] = None

    # Timestamps
    submitted_at: datetime = Field(default_factory=datetime.now, alias="timestamp")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def snapshot(self) -> "Job":
        """Return a point-in-time copy detached from the registry entry."""
        return self.model_copy(deep=True)


class EngineStatistics(BaseModel):
    """Aggregate view over the registry and the cache directory."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    cache_size: str
    cache_size_bytes: int
    total_transcodes: int
    active_jobs: int
    queued_jobs: int
    completed_jobs: int
    unique_devices: int
