#!/usr/bin/env python3
"""
SegSub Batch Processing Entry Point

Exports subtitles for every media file in a directory, smallest first,
writing the .srt files into a Subs/ subfolder.
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Tuple

# Progress bar library
from tqdm import tqdm

from segsub.cli import add_common_arguments, load_settings, LANGUAGE_CHOICES
from segsub.log_setup import setup_logging
from segsub.session import Session
from segsub.exceptions import SegSubError, ConfigurationError, FileSystemError
from segsub.utils import ensure_dir_exists

# Initialize logger for this script
logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = (".mp4", ".mov", ".mkv", ".m4v", ".avi", ".webm", ".mp3", ".wav", ".m4a", ".flac")


def find_and_sort_media(input_dir: str) -> List[Tuple[str, int]]:
    """
    Finds all media files in the input directory and sorts them by size.

    Args:
        input_dir: The directory to search for media files.

    Returns:
        A list of tuples, where each tuple is (filepath, filesize),
        sorted by filesize in ascending order.

    Raises:
        FileNotFoundError: If the input directory doesn't exist.
        ValueError: If the input path is not a directory.
    """
    if not os.path.exists(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not os.path.isdir(input_dir):
        raise ValueError(f"Input path is not a directory: {input_dir}")

    media = []
    logger.info(f"Scanning directory for media files: {input_dir}")
    for filename in os.listdir(input_dir):
        if filename.lower().endswith(MEDIA_EXTENSIONS):
            filepath = os.path.join(input_dir, filename)
            try:
                if os.path.isfile(filepath): # Ensure it's actually a file
                    media.append((filepath, os.path.getsize(filepath)))
            except OSError as e:
                logger.warning(f"Could not access file {filepath}: {e}. Skipping.")

    # Sort by file size (the second element in the tuple)
    media.sort(key=lambda item: item[1])
    logger.info(f"Found {len(media)} media files. Sorted by size (smallest first).")
    return media


def run_batch_processing():
    """Parses arguments, sets up, and runs the batch subtitle export."""
    parser = argparse.ArgumentParser(
        description="SegSub Batch: export subtitles for every media file in a directory.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "-i", "--input-dir",
        required=True,
        help="Directory containing the input media files."
    )
    parser.add_argument("-l", "--language", default=None, choices=LANGUAGE_CHOICES,
                        help="Spoken language code.")
    parser.add_argument("--translate", action="store_true",
                        help="Translate to English instead of transcribing.")
    add_common_arguments(parser)

    args = parser.parse_args()

    # --- Setup Logging (Initial) ---
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    setup_logging(log_level=log_level, log_dir='logs', log_file='segsub_batch_init.log')

    # --- Load Configuration ---
    try:
        config = load_settings(args)
    except ConfigurationError as e:
        logger.critical(f"Failed to load configuration: {e}", exc_info=True)
        sys.exit(1)

    # --- Re-configure Logging (Final) ---
    setup_logging(
        log_level=log_level,
        log_dir=config.get('log_dir', 'logs'),
        log_file='segsub_batch.log', # Use a different log file name for batch
    )
    logger.info("Logging re-configured with settings from config file for batch processing.")

    # --- Find and Sort Media ---
    try:
        sorted_media = find_and_sort_media(args.input_dir)
        if not sorted_media:
            logger.warning(f"No media files found in {args.input_dir}. Exiting.")
            sys.exit(0)
        sorted_media_paths = [item[0] for item in sorted_media]
    except (FileNotFoundError, ValueError) as e:
        logger.critical(f"Input directory error: {e}")
        sys.exit(1)

    # --- Setup Output Directory ---
    subs_dir = os.path.join(args.input_dir, "Subs")
    try:
        ensure_dir_exists(subs_dir)
    except FileSystemError as e:
        logger.critical(f"Could not create output directory: {e}")
        sys.exit(1)

    # One session for the whole batch; resolving the binary and model happens per export
    session = Session(config)

    total_files = len(sorted_media_paths)
    files_processed = 0
    files_failed = 0
    batch_start_time = time.time()

    logger.info(f"--- Starting Batch Subtitle Export for {total_files} files ---")

    with tqdm(total=total_files, unit="file", desc="Starting Batch") as pbar:
        for media_path in sorted_media_paths:
            media_filename = os.path.basename(media_path)
            pbar.set_description(f"Processing: {media_filename[:30]}...")
            destination = os.path.join(subs_dir, f"{os.path.splitext(media_filename)[0]}.srt")

            try:
                logger.info(f"--- Processing: {media_path} ---")
                media_start_time = time.time()
                session.open_source(media_path)
                report = session.export(destination, language=args.language,
                                        translate=args.translate, model=args.model)
                logger.info(f"Export for {media_filename} successful "
                            f"({time.time() - media_start_time:.2f}s, {report.entry_count} subtitles).")
                if report.failed_windows:
                    logger.warning(f"{media_filename}: window(s) {report.failed_windows} are missing.")
                files_processed += 1

            except ConfigurationError as e:
                # Missing binary or model fails every file the same way
                logger.critical(f"Configuration problem, stopping batch: {e}")
                sys.exit(1)
            except (SegSubError, FileNotFoundError) as e:
                logger.error(f"SegSub failed for '{media_filename}': {e}")
                files_failed += 1
            except KeyboardInterrupt:
                 logger.warning("Batch process interrupted by user (Ctrl+C). Exiting.")
                 session.close()
                 sys.exit(1)
            except Exception as e:
                logger.error(f"An unexpected error occurred processing '{media_filename}': {e}", exc_info=True)
                files_failed += 1
            finally:
                 pbar.update(1) # Increment progress bar regardless of success/failure

    session.close()
    logger.info(f"--- Batch Subtitle Export Finished ---")
    logger.info(f"Total time: {time.time() - batch_start_time:.2f} seconds")
    logger.info(f"Successfully processed: {files_processed}/{total_files} files")
    logger.info(f"Failed: {files_failed}/{total_files} files")

    if files_failed > 0:
        sys.exit(1) # Indicate partial failure with exit code
    else:
        sys.exit(0)


if __name__ == "__main__":
    if sys.version_info < (3, 8):
        sys.stderr.write("SegSub requires Python 3.8 or later.\n")
        sys.exit(1)
    run_batch_processing()
