"""
Artifact paths and cache housekeeping.

Every artifact lives directly under the cache root and is named after
its job id, so paths are unique per job and never reused:
    <cache_root>/combined_<job_id>.<ext>
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)

OUTPUT_PREFIX = "combined_"


def _sanitize_filename(name: str) -> str:
    """
    Sanitize a filename component.

    Job ids are generated internally, but the path must stay inside the
    cache root no matter what reaches this function.
    """
    invalid_chars = r'[<>:"/\\|?*\x00-\x1f]'
    sanitized = re.sub(invalid_chars, "_", name)

    sanitized = sanitized.strip(". ")

    if not sanitized:
        sanitized = "output"

    return sanitized


def generate_output_path(cache_dir: Path, job_id: str, extension: str) -> Path:
    """
    Generate the artifact path for a job.

    Args:
        cache_dir: Cache root
        job_id: Job identifier
        extension: Container extension without leading dot

    Returns:
        Absolute path under cache_dir
    """
    root = Path(cache_dir).resolve()
    filename = f"{OUTPUT_PREFIX}{_sanitize_filename(job_id)}.{_sanitize_filename(extension)}"
    return root / filename


def ensure_cache_dir(cache_dir: Path) -> Path:
    """Create the cache root if needed and return it resolved."""
    root = Path(cache_dir).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def cache_size_bytes(cache_dir: Path) -> int:
    """Total size of regular files under the cache root."""
    root = Path(cache_dir)
    if not root.is_dir():
        return 0

    total = 0
    for path in root.rglob("*"):
        try:
            if path.is_file():
                total += path.stat().st_size
        except OSError:
            # Vanished between listing and stat
            continue
    return total


def remove_file(path: Path) -> bool:
    """
    Delete a single artifact.

    Returns:
        True if the file was removed, False if it did not exist

    Raises:
        OSError: Any failure other than the file being missing
    """
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Removed file: {path}")
    return True


def clear_cache(cache_dir: Path, keep: Iterable[str] = ()) -> List[Path]:
    """
    Remove every file under the cache root except those in keep.

    Args:
        cache_dir: Cache root
        keep: Absolute paths that must survive (artifacts still being written)

    Returns:
        Paths that were removed
    """
    root = Path(cache_dir)
    if not root.is_dir():
        return []

    protected = {str(Path(p).resolve()) for p in keep}
    removed: List[Path] = []

    # Deepest first so emptied directories can be removed too
    for path in sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        resolved = str(path.resolve())
        try:
            if path.is_dir():
                if not any(path.iterdir()):
                    path.rmdir()
            elif resolved not in protected:
                path.unlink()
                removed.append(path)
        except OSError as e:
            logger.error(f"Error removing {path}: {e}")

    logger.info(f"Cache cleared: {len(removed)} file(s) removed from {root}")
    return removed
