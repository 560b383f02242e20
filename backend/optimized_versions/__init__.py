"""Optimized versions server: HLS to single-file job orchestration."""

__version__ = "0.1.0"
