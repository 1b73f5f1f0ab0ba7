import os
import re
import shutil
import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger("moderation_worker")


def get_frames_dir(temp_dir: str, job_id: str) -> str:
    """Get the job-scoped temporary frames directory"""
    return os.path.join(temp_dir, clean_filename(str(job_id)))


@contextmanager
def frame_workspace(temp_dir: str, job_id: str) -> Iterator[str]:
    """
    Create the job's temporary frames directory and remove it on exit.

    Removal happens on every exit path, including exceptions.
    """
    frames_dir = get_frames_dir(temp_dir, job_id)
    # Leftovers from a crashed run must not be mistaken for this run's frames
    remove_dir(frames_dir)
    ensure_dir(frames_dir)
    try:
        yield frames_dir
    finally:
        remove_dir(frames_dir)


def remove_dir(path: str) -> None:
    """Remove a directory tree if it exists"""
    if os.path.isdir(path):
        shutil.rmtree(path, ignore_errors=True)
        if os.path.exists(path):
            logger.warning(f"Could not fully remove directory {path}")


def ensure_dir(path: str):
    """Ensure directory exists"""
    os.makedirs(path, exist_ok=True)


def get_file_size_mb(file_path: str) -> float:
    """Get file size in MB"""
    try:
        size_bytes = os.path.getsize(file_path)
        return size_bytes / (1024 * 1024)
    except OSError:
        return 0.0


def clean_filename(filename: str) -> str:
    """Clean filename for safe filesystem usage"""
    # Remove or replace unsafe characters
    filename = re.sub(r'[<>:"/\\|?*]', '_', filename)
    # Remove multiple underscores
    filename = re.sub(r'_+', '_', filename)
    # Remove leading/trailing underscores and dots
    filename = filename.strip('_.')
    return filename or 'unnamed'
