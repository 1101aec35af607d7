"""Root logger setup shared by the SegSub command-line front-ends."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .utils import ensure_dir_exists

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _drop_root_handlers(root: logging.Logger) -> None:
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()


def _rotating_file_handler(log_dir: str, log_file: str, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    ensure_dir_exists(log_dir)
    return RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )


def setup_logging(
    log_level: int = logging.INFO,
    log_dir: str = "logs",
    log_file: str = "segsub.log",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True
) -> None:
    """
    Routes every SegSub logger through the root logger.

    The CLIs call this twice: once with a bootstrap log file so configuration
    errors are recorded, and again once the config names the real log
    location. Each call replaces the handlers of the previous one.

    Args:
        log_level: Level applied to the root logger and the console handler.
        log_dir: Directory of the rotating log file; created when missing.
        log_file: File name inside log_dir.
        log_format: Record format shared by both handlers.
        date_format: Timestamp format for %(asctime)s.
        max_bytes: Size at which the log file rolls over.
        backup_count: Rolled-over files kept next to the active one.
        console: Echo records to stdout. ``preview`` turns it off because it
                 prints subtitle lines on stdout.
    """
    root = logging.getLogger()
    _drop_root_handlers(root)
    root.setLevel(log_level)
    formatter = logging.Formatter(log_format, datefmt=date_format)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        root.addHandler(console_handler)

    file_handler: Optional[RotatingFileHandler] = None
    try:
        file_handler = _rotating_file_handler(log_dir, log_file, max_bytes, backup_count)
    except Exception as e:
        # Without a writable log directory the run continues on the console handler
        root.error(f"Cannot write log file {os.path.join(log_dir, log_file)}: {e}", exc_info=True)
    if file_handler is not None:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        root.info(f"SegSub logging to {file_handler.baseFilename} at {logging.getLevelName(log_level)}")
