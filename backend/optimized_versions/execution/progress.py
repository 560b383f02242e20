"""
FFmpeg progress parsing.

Real-time progress extraction from FFmpeg stderr.

FFmpeg outputs progress to stderr in this format:
    frame=   24 fps= 12 q=-1.0 size=     256kB time=00:00:01.00 bitrate=2097.2kbits/s speed=2.31x

We parse:
- time=HH:MM:SS → elapsed position (fractional seconds ignored)
- speed=N.Nx    → processing speed relative to realtime
- Compare elapsed against probed duration → percentage

Status lines are terminated with carriage returns, not newlines,
so raw chunks are split on both before parsing (see split_lines).
"""

import re
from dataclasses import dataclass
from typing import Optional, List, Tuple


# Matches: time=00:00:01.00 or time=123:01:23.45
# Negative start offsets (time=-00:00:00.02) deliberately do not match.
TIME_PATTERN = re.compile(r'time=(\d+):(\d{2}):(\d{2})')

# Matches: speed=2.5x or speed= 0.98x, not speed=N/A
SPEED_PATTERN = re.compile(r'speed=\s*(\d+(?:\.\d+)?)x')

LINE_SEPARATOR = re.compile(r'[\r\n]+')

# 100 is only reached through a successful exit
MAX_PROGRESS_PERCENT = 99.9


@dataclass(frozen=True)
class ProgressSample:
    """One parsed progress observation."""

    # Percentage of the probed duration; None if the duration is unknown
    progress: Optional[float] = None

    # Processing speed multiplier (2.0 = twice realtime)
    speed: Optional[float] = None


def parse_timestamp(hours: str, minutes: str, seconds: str) -> int:
    """Convert an H:MM:SS triple to whole seconds."""
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds)


def parse_progress_line(line: str, total_duration: Optional[float]) -> Optional[ProgressSample]:
    """
    Parse a single line of FFmpeg stderr output.

    Args:
        line: Single line from FFmpeg stderr
        total_duration: Probed duration in seconds, or None if unknown

    Returns:
        ProgressSample if the line carried any usable information, None otherwise.
        Never raises.
    """
    time_match = TIME_PATTERN.search(line)
    if not time_match:
        return None

    speed: Optional[float] = None
    speed_match = SPEED_PATTERN.search(line)
    if speed_match:
        speed = float(speed_match.group(1))

    progress: Optional[float] = None
    if total_duration and total_duration > 0:
        elapsed = parse_timestamp(*time_match.groups())
        percent = (elapsed / total_duration) * 100.0
        progress = min(max(percent, 0.0), MAX_PROGRESS_PERCENT)

    if progress is None and speed is None:
        return None

    return ProgressSample(progress=progress, speed=speed)


def split_lines(buffer: str, chunk: str) -> Tuple[List[str], str]:
    """
    Split buffered stderr text into complete lines.

    Args:
        buffer: Incomplete trailing text from the previous call
        chunk: Newly read text

    Returns:
        Tuple of (complete lines, new trailing buffer)
    """
    parts = LINE_SEPARATOR.split(buffer + chunk)
    remainder = parts.pop()
    return [part for part in parts if part], remainder


def format_size(size_bytes: Optional[int]) -> str:
    """
    Format file size for display.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string
    """
    if size_bytes is None:
        return "Unknown"

    if size_bytes < 1024:
        return f"{size_bytes} B"

    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"

    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"

    return f"{size_bytes / (1024 * 1024 * 1024):.2f} GB"
