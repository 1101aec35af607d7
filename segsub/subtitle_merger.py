"""Merges per-window SRT fragments into one renumbered subtitle file."""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .exceptions import FileSystemError, FormattingError
from .models import SubtitleEntry
from .utils import format_time_srt, parse_time_srt, remove_file_quietly

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")
TIMECODE_LINE = re.compile(
    r"^\s*(\d+:\d{2}:\d{2}[,.]\d{3})\s*-->\s*(\d+:\d{2}:\d{2}[,.]\d{3})(.*)$"
)


@dataclass(frozen=True)
class Fragment:
    """Subtitle text produced for one export window."""
    window_index: int
    start_time: float
    text: str


def parse_blocks(content: str) -> List[SubtitleEntry]:
    """
    Splits SRT text into entries, keeping each block's original number.

    Whitespace-only blocks and blocks with a timecode but no text are
    skipped. Blocks without a timecode line are logged and skipped.
    """
    normalized = content.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff")
    entries: List[SubtitleEntry] = []
    for raw_block in BLOCK_SEPARATOR.split(normalized):
        if not raw_block.strip():
            continue
        lines = raw_block.strip("\n").split("\n")
        number = 0
        if lines and lines[0].strip().isdigit():
            number = int(lines[0].strip())
            lines = lines[1:]
        if not lines or not TIMECODE_LINE.match(lines[0]):
            logger.warning(f"Skipping subtitle block without a timecode: {raw_block.strip()[:60]!r}")
            continue
        text = "\n".join(lines[1:]).strip()
        if not text:
            logger.debug(f"Skipping subtitle block without text: {lines[0].strip()!r}")
            continue
        entries.append(SubtitleEntry(
            sequence_number=number,
            timecode_block=lines[0].strip(),
            text=text,
        ))
    return entries


def shift_timecode(timecode_block: str, offset: float) -> str:
    """Adds ``offset`` seconds to both ends of an SRT timecode line."""
    match = TIMECODE_LINE.match(timecode_block)
    if not match:
        raise FormattingError(f"Not a timecode line: {timecode_block!r}")
    if not offset:
        return timecode_block
    start = parse_time_srt(match.group(1)) + offset
    end = parse_time_srt(match.group(2)) + offset
    return f"{format_time_srt(start)} --> {format_time_srt(end)}{match.group(3)}"


def merge_fragments(fragments: Iterable[Fragment], offset_timecodes: bool = True) -> Tuple[str, List[SubtitleEntry]]:
    """
    Concatenates fragments in window order and renumbers every block 1..N.

    Args:
        fragments: One Fragment per successful window, in any order.
        offset_timecodes: Shift each window's timecodes by the window start,
                          since whisper-cli timestamps every slice from zero.

    Returns:
        The merged SRT text and the renumbered entries.
    """
    merged: List[SubtitleEntry] = []
    for fragment in sorted(fragments, key=lambda f: f.window_index):
        offset = fragment.start_time if offset_timecodes else 0.0
        for entry in parse_blocks(fragment.text):
            merged.append(SubtitleEntry(
                sequence_number=len(merged) + 1,
                timecode_block=shift_timecode(entry.timecode_block, offset),
                text=entry.text,
            ))
    text = "".join(f"{entry.to_srt()}\n\n" for entry in merged)
    logger.info(f"Merged {len(merged)} subtitle blocks")
    return text, merged


def read_fragment(path: str) -> str:
    """
    Reads one fragment file.

    Raises:
        FormattingError: If the file cannot be read or decoded.
    """
    try:
        with open(path, 'r', encoding='utf-8', errors='strict') as f:
            return f.read()
    except (IOError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read subtitle fragment {path}: {e}")
        raise FormattingError(f"Could not read subtitle fragment {path}: {e}") from e


def write_atomically(path: str, text: str) -> None:
    """
    Writes ``text`` to ``path`` through a temporary file in the same directory
    that is renamed into place, so readers never see a partial file.

    Raises:
        FileSystemError: If the directory is missing or the write fails.
    """
    directory = os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(directory):
        raise FileSystemError(f"Output directory does not exist: {directory}")
    try:
        fd, temp_path = tempfile.mkstemp(prefix=".segsub_", suffix=".srt.tmp", dir=directory)
    except OSError as e:
        raise FileSystemError(f"Cannot create files in {directory}: {e}") from e
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        logger.error(f"Failed to write subtitle file {path}: {e}", exc_info=True)
        remove_file_quietly(temp_path)
        raise FileSystemError(f"Could not write subtitle file {path}: {e}") from e
    logger.info(f"Wrote subtitle file: {path}")
