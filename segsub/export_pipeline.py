"""Orchestrates the full-file subtitle export pipeline."""

import logging
import math
import os
import shutil
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Set

from .exceptions import (
    CancelledError, ExportError, FileSystemError, FormattingError, NoValidFragmentsError, SegSubError,
)
from .media_slicer import MediaSlicer
from .models import (
    AudioSlice, ExportReport, OutputFormat, SourceMedia, TranscriptionJob, TranscriptionResult, Window,
)
from .pipeline_state import PipelineState
from .process_runner import CancelToken
from .subtitle_merger import Fragment, merge_fragments, read_fragment, write_atomically
from .transcriber import Transcriber, default_thread_count
from .utils import ensure_dir_exists, remove_file_quietly

logger = logging.getLogger(__name__)


def partition_windows(duration: float, window_duration: float = 60.0, min_window_duration: float = 1.0) -> List[Window]:
    """
    Splits [0, duration) into fixed-length windows numbered from 0.

    A trailing window shorter than ``min_window_duration`` is dropped.
    """
    if window_duration <= 0:
        raise ValueError("window_duration must be positive")
    if duration <= 0:
        return []
    windows = []
    for index in range(int(math.ceil(duration / window_duration))):
        start = index * window_duration
        end = min(start + window_duration, duration)
        if end - start < min_window_duration:
            logger.debug(f"Dropping window {index}: {end - start:.3f}s is below the minimum length")
            continue
        windows.append(Window(index=index, start_time=start, end_time=end))
    return windows


def srt_destination(path: str) -> str:
    """Forces the .srt extension on a destination path."""
    base, ext = os.path.splitext(path)
    return path if ext.lower() == ".srt" else f"{base}.srt"


class ExportPipeline:
    """
    Exports subtitles for a whole file: extract the full audio once, cut it
    into windows, transcribe windows in parallel, merge the fragments in
    window order and write the result atomically.
    """

    def __init__(
        self,
        state: PipelineState,
        slicer: MediaSlicer,
        transcriber: Transcriber,
        temp_dir: Optional[str] = None,
        window_duration: float = 60.0,
        min_window_duration: float = 1.0,
        min_slice_bytes: int = 1000,
        max_workers: Optional[int] = None,
        threads: Optional[int] = None,
        completion_clear_delay: float = 3.0,
        offset_timecodes: bool = True
    ):
        """
        Initializes the ExportPipeline.

        Args:
            state: Shared state receiving status, progress and errors.
            slicer: Used for the full-audio extraction and the window slices.
            transcriber: Runs whisper-cli per window in subtitle-file mode.
            temp_dir: Parent of the per-export scratch directory.
            window_duration: Window length in seconds.
            min_window_duration: Shorter trailing windows are dropped.
            min_slice_bytes: Window slices smaller than this are treated as failed.
            max_workers: Concurrent windows; defaults to the CPU count.
            threads: --threads passed to whisper-cli; defaults to the CPU count.
            completion_clear_delay: Seconds before export_completed auto-clears.
            offset_timecodes: Shift fragment timecodes by their window start when merging.
        """
        self.state = state
        self.slicer = slicer
        self.transcriber = transcriber
        self.temp_dir = temp_dir or tempfile.gettempdir()
        self.window_duration = window_duration
        self.min_window_duration = min_window_duration
        self.min_slice_bytes = min_slice_bytes
        self.max_workers = max_workers or default_thread_count()
        self.threads = threads or default_thread_count()
        self.completion_clear_delay = completion_clear_delay
        self.offset_timecodes = offset_timecodes

    def _cleanup_temp_files(self, file_paths: Set[str], run_dir: Optional[str]) -> None:
        """Removes every temporary file of a run, then the run's scratch directory."""
        for file_path in sorted(file_paths):
            remove_file_quietly(file_path)
        if run_dir and os.path.isdir(run_dir):
            shutil.rmtree(run_dir, ignore_errors=True)
            logger.info(f"Cleaned up export scratch directory: {run_dir}")

    def export(
        self,
        source: SourceMedia,
        destination: str,
        model_path: str,
        language: str = "en",
        translate: bool = False,
        cancel_token: Optional[CancelToken] = None
    ) -> ExportReport:
        """
        Executes the full export pipeline for one source.

        Args:
            source: The probed source media.
            destination: Output path; the extension is forced to .srt.
            model_path: Resolved model file.
            language: Spoken language code passed to whisper-cli.
            translate: Run whisper-cli in translation mode.
            cancel_token: Cancelling it terminates running child processes
                          and aborts the export.

        Returns:
            An ExportReport listing completed and failed windows.

        Raises:
            ExportError: If the audio cannot be extracted or no window succeeds
                         (NoValidFragmentsError).
            FormattingError: If a fragment cannot be read.
            FileSystemError: If the output cannot be written.
            CancelledError: If the export was cancelled.
        """
        start_time = time.time()
        destination = srt_destination(destination)
        token = cancel_token or CancelToken(f"export-{os.path.basename(source.path)}")
        logger.info(f"--- Starting export for: {source.path} -> {destination} ---")

        temp_files: Set[str] = set()
        run_dir = None
        self.state.begin_export("Extracting audio track...")
        try:
            ensure_dir_exists(self.temp_dir)
            run_dir = tempfile.mkdtemp(prefix="export_", dir=self.temp_dir)

            # 1. Extract the full audio once
            logger.info("Step 1: Extracting full audio...")
            try:
                full_audio = self.slicer.extract_slice(
                    source, 0.0, source.duration, output_dir=run_dir,
                    prefix="export_audio", cancel_token=token,
                )
                temp_files.add(full_audio.path)
                intermediate = self.slicer.probe(full_audio.path)
            except CancelledError:
                raise
            except (SegSubError, OSError) as e:
                raise ExportError(f"Could not extract the audio track: {e}") from e

            # 2. Partition into windows
            windows = partition_windows(intermediate.duration, self.window_duration, self.min_window_duration)
            logger.info(f"Step 2: {len(windows)} window(s) of up to {self.window_duration:.0f}s")
            if not windows:
                raise NoValidFragmentsError("The audio track is too short to export.")

            # 3. Transcribe windows in parallel
            self.state.update(export_status=f"Transcribing {len(windows)} window(s)...")
            job = TranscriptionJob(
                model_path=model_path, language=language, translate=translate,
                output_format=OutputFormat.SUBTITLE_FILE, threads=self.threads,
            )
            results = self._transcribe_windows(intermediate, windows, job, run_dir, token, temp_files)
            token.raise_if_cancelled()

            failed = sorted(w.index for w in windows if w.index not in results)
            if not results:
                raise NoValidFragmentsError(f"All {len(windows)} window(s) failed; no subtitles to export.")
            if failed:
                logger.warning(f"Exporting without window(s) {failed}")

            # 4. Merge and renumber
            logger.info("Step 4: Merging fragments...")
            self.state.update(export_status="Merging subtitles...")
            fragments = [
                Fragment(
                    window_index=result.index,
                    start_time=result.start_time,
                    text=read_fragment(result.subtitle_fragment_path),
                )
                for result in results.values()
            ]
            merged_text, entries = merge_fragments(fragments, offset_timecodes=self.offset_timecodes)

            # 5. Write output
            logger.info(f"Step 5: Writing {destination}")
            write_atomically(destination, merged_text)

            self.state.mark_export_completed(self.completion_clear_delay)
            logger.info(f"--- Export completed in {time.time() - start_time:.2f} seconds ---")
            return ExportReport(
                output_path=destination,
                total_windows=len(windows),
                completed_windows=sorted(results),
                failed_windows=failed,
                entry_count=len(entries),
            )

        except CancelledError:
            logger.warning(f"Export of {source.path} cancelled")
            self.state.update(export_status=None, export_completed=False, export_progress=0.0)
            raise
        except (ExportError, FormattingError, FileSystemError) as e:
            logger.error(f"Export failed: {e}")
            self.state.fail_export(str(e))
            raise
        except Exception as e:
            logger.critical(f"An unexpected error occurred during export: {e}", exc_info=True)
            self.state.fail_export(f"Export failed: {e}")
            raise ExportError(f"An unexpected error occurred: {e}") from e
        finally:
            # 6. Cleanup
            self._cleanup_temp_files(temp_files, run_dir)

    def _transcribe_windows(
        self,
        intermediate: SourceMedia,
        windows: List[Window],
        job: TranscriptionJob,
        run_dir: str,
        token: CancelToken,
        temp_files: Set[str]
    ) -> Dict[int, TranscriptionResult]:
        """
        Runs every window through slicing and whisper-cli. Returns the results of
        the windows that produced a fragment, by window index.

        Once the token is cancelled no progress or error reaches the state, since
        the owner may already have reset it for another source.
        """
        total = len(windows)
        lock = threading.Lock()
        counters = {"completed": 0}

        def live() -> bool:
            return not token.is_cancelled

        def track(path: str) -> None:
            with lock:
                temp_files.add(path)

        def process(window: Window) -> TranscriptionResult:
            with lock:
                completed = counters["completed"]
            # Partial credit when a window starts; stays below the next full step
            self.state.advance_export_progress((completed + 0.5) / total, guard=live)
            try:
                return self._process_window(intermediate, window, job, run_dir, token, track)
            finally:
                with lock:
                    counters["completed"] += 1
                    completed = counters["completed"]
                self.state.advance_export_progress(completed / total, guard=live)

        results: Dict[int, TranscriptionResult] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, total), thread_name_prefix="export") as executor:
            futures = {executor.submit(process, window): window for window in windows}
            for future in as_completed(futures):
                window = futures[future]
                try:
                    results[window.index] = future.result()
                    logger.info(f"Window {window.index} finished")
                except CancelledError:
                    logger.debug(f"Window {window.index} cancelled")
                except (SegSubError, OSError) as e:
                    logger.error(f"Window {window.index} failed: {e}")
                    self.state.report_error(f"Window {window.index} failed: {e}", guard=live)
                except Exception as e:
                    logger.error(f"Unexpected error in window {window.index}: {e}", exc_info=True)
                    self.state.report_error(f"Window {window.index} failed: {e}", guard=live)
        return results

    def _process_window(
        self,
        intermediate: SourceMedia,
        window: Window,
        job: TranscriptionJob,
        run_dir: str,
        token: CancelToken,
        track
    ) -> TranscriptionResult:
        token.raise_if_cancelled()
        audio_slice: AudioSlice = self.slicer.extract_slice(
            intermediate, window.start_time, window.end_time, output_dir=run_dir,
            prefix=f"window_{window.index}", cancel_token=token,
        )
        track(audio_slice.path)
        size = os.path.getsize(audio_slice.path)
        logger.debug(f"Window {window.index}: {os.path.basename(audio_slice.path)}, {size} bytes")
        if size < self.min_slice_bytes:
            raise ExportError(f"Window {window.index} audio is too small ({size} bytes)")

        output_base = os.path.splitext(audio_slice.path)[0]
        track(f"{output_base}.srt")
        try:
            fragment_path = self.transcriber.run_to_file(audio_slice, job, output_base, cancel_token=token)
        finally:
            # The window slice is no longer needed once whisper-cli has exited
            remove_file_quietly(audio_slice.path)
        return TranscriptionResult(
            index=window.index, subtitle_fragment_path=fragment_path, start_time=window.start_time,
        )
