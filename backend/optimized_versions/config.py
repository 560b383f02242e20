"""Application configuration via environment variables."""

import tempfile
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from optimized_versions.execution.commands import HardwareAcceleration, DEFAULT_VAAPI_DEVICE


class Settings(BaseSettings):
    # Job processing
    max_concurrent_jobs: int = Field(default=1, ge=1)
    cache_dir: Path = Path(tempfile.gettempdir()) / "optimized-versions"

    # FFmpeg
    hardware_acceleration: HardwareAcceleration = HardwareAcceleration.NONE
    vaapi_device: str = DEFAULT_VAAPI_DEVICE
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Jellyfin (auth + URL rewriting); unset disables both
    jellyfin_url: Optional[str] = None

    # Retention sweep
    file_retention_hours: float = Field(default=1.0, gt=0)
    cleanup_interval_minutes: float = Field(default=60.0, gt=0)

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
