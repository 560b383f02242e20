"""
Execution pipeline for optimize jobs.

FFmpeg is the sole execution engine: ffprobe for duration, ffmpeg for
the combine step. Hardware acceleration only changes the command
template handed to the supervisor.
"""

from .errors import (
    ExecutionError,
    ProbeFailedError,
    CombineFailedError,
)
from .results import (
    ExecutionResult,
    ExecutionStatus,
)
from .base import SupervisorListener
from .commands import (
    CommandTemplate,
    HardwareAcceleration,
    get_command_template,
    get_probe_template,
)
from .progress import ProgressSample, parse_progress_line
from .ffmpeg import FFmpegSupervisor
from .scheduler import Scheduler

__all__ = [
    # Errors
    "ExecutionError",
    "ProbeFailedError",
    "CombineFailedError",
    # Results
    "ExecutionResult",
    "ExecutionStatus",
    # Supervisor
    "SupervisorListener",
    "FFmpegSupervisor",
    # Command templates
    "CommandTemplate",
    "HardwareAcceleration",
    "get_command_template",
    "get_probe_template",
    # Progress
    "ProgressSample",
    "parse_progress_line",
    # Scheduler
    "Scheduler",
]
