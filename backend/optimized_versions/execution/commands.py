"""
FFmpeg / FFprobe command templates.

A command template is a pure function from a Job to an argument list.
The supervisor receives templates ready-made and never branches on
hardware capability itself, so argument construction can be tested
without spawning anything.

Profiles:
- none:  stream copy, remux only (default)
- vaapi: decode + H.264 encode on a VAAPI render node
- nvenc: decode + H.264 encode on an NVIDIA GPU
- qsv:   decode + H.264 encode on Intel Quick Sync
"""

from enum import Enum
from functools import partial
from typing import Callable, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    from ..jobs.models import Job


CommandTemplate = Callable[["Job"], List[str]]

DEFAULT_VAAPI_DEVICE = "/dev/dri/renderD128"

# Containers that understand -movflags
MOV_FAMILY_EXTENSIONS = frozenset({"mp4", "mov"})


class HardwareAcceleration(str, Enum):
    """Hardware acceleration profile for the combine step."""

    NONE = "none"
    VAAPI = "vaapi"
    NVENC = "nvenc"
    QSV = "qsv"


def build_probe_command(job: "Job", ffprobe_path: str = "ffprobe") -> List[str]:
    """Ask ffprobe for the container duration in seconds, bare value on stdout."""
    return [
        ffprobe_path,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        job.input_url,
    ]


def _output_args(job: "Job") -> List[str]:
    """Audio handling and container flags shared by every profile."""
    args = ["-c:a", "copy"]
    if job.file_extension in MOV_FAMILY_EXTENSIONS:
        # ADTS AAC from HLS segments must be converted for MP4/MOV muxing
        args.extend(["-bsf:a", "aac_adtstoasc", "-movflags", "faststart"])
    args.append(job.output_path)
    return args


def build_copy_command(job: "Job", ffmpeg_path: str = "ffmpeg") -> List[str]:
    """Remux the HLS stream into a single file without re-encoding."""
    return [
        ffmpeg_path, "-y",
        "-i", job.input_url,
        "-c:v", "copy",
    ] + _output_args(job)


def build_vaapi_command(
    job: "Job",
    ffmpeg_path: str = "ffmpeg",
    vaapi_device: str = DEFAULT_VAAPI_DEVICE,
) -> List[str]:
    """Re-encode video to H.264 through VAAPI."""
    return [
        ffmpeg_path, "-y",
        "-hwaccel", "vaapi",
        "-hwaccel_device", vaapi_device,
        "-hwaccel_output_format", "vaapi",
        "-i", job.input_url,
        "-c:v", "h264_vaapi",
    ] + _output_args(job)


def build_nvenc_command(job: "Job", ffmpeg_path: str = "ffmpeg") -> List[str]:
    """Re-encode video to H.264 through NVENC."""
    return [
        ffmpeg_path, "-y",
        "-hwaccel", "cuda",
        "-hwaccel_output_format", "cuda",
        "-i", job.input_url,
        "-c:v", "h264_nvenc",
        "-preset", "p4",
    ] + _output_args(job)


def build_qsv_command(job: "Job", ffmpeg_path: str = "ffmpeg") -> List[str]:
    """Re-encode video to H.264 through Quick Sync."""
    return [
        ffmpeg_path, "-y",
        "-hwaccel", "qsv",
        "-hwaccel_output_format", "qsv",
        "-i", job.input_url,
        "-c:v", "h264_qsv",
    ] + _output_args(job)


def get_command_template(
    profile: HardwareAcceleration,
    ffmpeg_path: str = "ffmpeg",
    vaapi_device: str = DEFAULT_VAAPI_DEVICE,
) -> CommandTemplate:
    """
    Select the combine template for a hardware acceleration profile.

    Args:
        profile: Configured acceleration profile
        ffmpeg_path: ffmpeg executable
        vaapi_device: Render node, only used by the vaapi profile

    Returns:
        Function mapping a Job to its ffmpeg argument list
    """
    templates: Dict[HardwareAcceleration, CommandTemplate] = {
        HardwareAcceleration.NONE: partial(build_copy_command, ffmpeg_path=ffmpeg_path),
        HardwareAcceleration.VAAPI: partial(
            build_vaapi_command, ffmpeg_path=ffmpeg_path, vaapi_device=vaapi_device
        ),
        HardwareAcceleration.NVENC: partial(build_nvenc_command, ffmpeg_path=ffmpeg_path),
        HardwareAcceleration.QSV: partial(build_qsv_command, ffmpeg_path=ffmpeg_path),
    }
    return templates[HardwareAcceleration(profile)]


def get_probe_template(ffprobe_path: str = "ffprobe") -> CommandTemplate:
    """Return the duration probe template bound to an ffprobe executable."""
    return partial(build_probe_command, ffprobe_path=ffprobe_path)
