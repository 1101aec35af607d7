"""Utility functions for SegSub."""

import os
import logging
import re
import tempfile
import uuid
from typing import Optional

from .exceptions import FileSystemError

logger = logging.getLogger(__name__)

SRT_TIME_PATTERN = re.compile(r"(\d+):(\d{2}):(\d{2})[,.](\d{3})")

def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path, exist_ok=True)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e

def unique_temp_path(prefix: str, suffix: str, temp_dir: Optional[str] = None) -> str:
    """
    Builds a collision-free path inside the temp directory. Nothing is created.

    Args:
        prefix: Leading part of the file name (e.g. "segment_3").
        suffix: File extension including the dot (e.g. ".wav").
        temp_dir: Directory to use; defaults to the system temp directory.
    """
    directory = temp_dir or tempfile.gettempdir()
    return os.path.join(directory, f"{prefix}_{uuid.uuid4().hex}{suffix}")

def remove_file_quietly(file_path: Optional[str]) -> bool:
    """Removes a file if present. Returns True when a file was deleted."""
    if not file_path or not os.path.exists(file_path):
        return False
    try:
        os.remove(file_path)
        logger.debug(f"Removed temporary file: {file_path}")
        return True
    except OSError as e:
        logger.warning(f"Could not remove temporary file {file_path}: {e}")
        return False

def format_time_srt(seconds: float) -> str:
    """
    Formats seconds into SRT time format HH:MM:SS,ms.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted time string.
    """
    if seconds < 0:
        seconds = 0.0 # Ensure non-negative time
    milliseconds = round(seconds * 1000)
    hrs = milliseconds // 3600000
    milliseconds %= 3600000
    mins = milliseconds // 60000
    milliseconds %= 60000
    secs = milliseconds // 1000
    milliseconds %= 1000
    return f"{hrs:02d}:{mins:02d}:{secs:02d},{milliseconds:03d}"

def parse_time_srt(value: str) -> float:
    """
    Parses an SRT timestamp (HH:MM:SS,mmm) into seconds.

    Raises:
        ValueError: If the value is not a timestamp.
    """
    match = SRT_TIME_PATTERN.fullmatch(value.strip())
    if not match:
        raise ValueError(f"Not an SRT timestamp: {value!r}")
    hrs, mins, secs, millis = (int(part) for part in match.groups())
    return hrs * 3600 + mins * 60 + secs + millis / 1000.0
