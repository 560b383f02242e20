"""
Shared fixtures for the optimized versions test suite.

Real ffmpeg/ffprobe are never required. Fake tools are small Python
programs run with the current interpreter, so the supervisor still
spawns, reads and reaps genuine child processes.
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from optimized_versions.config import Settings
from optimized_versions.jobs.engine import JobEngine
from optimized_versions.jobs.models import Job


ARTIFACT_PAYLOAD = b"optimized"

# Long enough that only a kill ends it during a test
SLOW_SECONDS = 30.0


def python_command(source: str, *args: str) -> List[str]:
    return [sys.executable, "-c", source, *args]


def probe_template(output: str = "10.0", exit_code: int = 0, stderr: str = "") -> Callable[[Job], List[str]]:
    """Fake ffprobe: prints output on stdout, stderr on stderr, exits with exit_code."""
    source = "\n".join([
        "import sys",
        f"print({output!r})",
        f"sys.stderr.write({stderr!r})",
        f"sys.exit({exit_code})",
    ])
    return lambda job: python_command(source)


def combiner_template(
    lines: Iterable[str] = (),
    exit_code: int = 0,
    payload: Optional[bytes] = ARTIFACT_PAYLOAD,
    sleep: float = 0.0,
) -> Callable[[Job], List[str]]:
    """
    Fake ffmpeg.

    Writes each line to stderr terminated by a carriage return, like
    ffmpeg status lines, writes payload to the output path (argv[1])
    and exits with exit_code.
    """
    source = "\n".join([
        "import sys, time",
        f"time.sleep({sleep!r})",
        f"for line in {list(lines)!r}:",
        "    sys.stderr.write(line + '\\r')",
        "    sys.stderr.flush()",
        f"payload = {payload!r}",
        "if payload is not None:",
        "    open(sys.argv[1], 'wb').write(payload)",
        f"sys.exit({exit_code})",
    ])
    return lambda job: python_command(source, job.output_path)


def slow_combiner() -> Callable[[Job], List[str]]:
    return combiner_template(sleep=SLOW_SECONDS)


def by_source(templates: Dict[str, Callable[[Job], List[str]]]) -> Callable[[Job], List[str]]:
    """Pick a template by a marker contained in the job's input URL."""
    def template(job: Job) -> List[str]:
        for marker, chosen in templates.items():
            if marker in job.input_url:
                return chosen(job)
        raise AssertionError(f"No template for {job.input_url}")
    return template


class RecordingTemplate:
    """Wraps a template and records every job it was asked to build."""

    def __init__(self, template: Callable[[Job], List[str]]):
        self.template = template
        self.calls: List[str] = []

    def __call__(self, job: Job) -> List[str]:
        self.calls.append(job.id)
        return self.template(job)


async def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll predicate on the event loop until it holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.02)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
async def make_engine(cache_dir):
    """
    Factory for engines wired to fake tools.

    Every engine created is shut down after the test, which kills any
    child process still running.
    """
    engines: List[JobEngine] = []

    def factory(
        combiner: Optional[Callable[[Job], List[str]]] = None,
        probe: Optional[Callable[[Job], List[str]]] = None,
        max_concurrent: int = 1,
        root: Optional[Path] = None,
    ) -> JobEngine:
        engine = JobEngine(
            cache_dir=root or cache_dir,
            max_concurrent=max_concurrent,
            command_template=combiner or combiner_template(),
            probe_template=probe or probe_template(),
        )
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.shutdown()


@pytest.fixture
def settings(cache_dir) -> Settings:
    return Settings(cache_dir=cache_dir, jellyfin_url=None, max_concurrent_jobs=1)
