"""Live-preview pipeline: transcribes fixed-size segments as playback reaches them."""

import logging
import os
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Set

from .exceptions import CancelledError, SegSubError
from .media_slicer import MediaSlicer
from .models import SourceMedia, TranscriptionJob, TranscriptionMode, TranscriptionResult
from .pipeline_state import PENDING_PLACEHOLDER, PipelineState
from .process_runner import CancelToken
from .transcriber import Transcriber
from .utils import remove_file_quietly

logger = logging.getLogger(__name__)


class PlaybackClock(ABC):
    """What the scheduler needs from the media player."""

    @abstractmethod
    def current_time(self) -> Optional[float]:
        """Current playback position in seconds, or None when nothing is loaded."""
        pass

    @abstractmethod
    def seek(self, seconds: float) -> None:
        pass


class SegmentScheduler:
    """
    Watches the playback position and dispatches one transcription job per
    segment the first time playback enters it.

    Runs are numbered. Starting a new run, or shutting the scheduler down,
    cancels the previous run's child processes and makes its late results
    invisible to the pipeline state.
    """

    def __init__(
        self,
        state: PipelineState,
        slicer: MediaSlicer,
        transcriber: Transcriber,
        source: SourceMedia,
        player: PlaybackClock,
        model_path: str,
        segment_duration: float = 10.0,
        poll_interval: Optional[float] = 1.0,
        max_workers: Optional[int] = None,
        temp_dir: Optional[str] = None
    ):
        """
        Args:
            state: Shared state the results are published to.
            slicer: Cuts the segment audio out of the source.
            transcriber: Runs whisper-cli on each segment.
            source: The opened media file.
            player: Playback position provider.
            model_path: Resolved model file used for every job.
            segment_duration: Segment length in seconds.
            poll_interval: Seconds between position checks. None disables the
                           internal ticker; the owner then calls on_position().
            max_workers: Upper bound on concurrently processed segments.
            temp_dir: Where segment slices are written.
        """
        if segment_duration <= 0:
            raise ValueError("segment_duration must be positive")
        self.state = state
        self.slicer = slicer
        self.transcriber = transcriber
        self.source = source
        self.player = player
        self.model_path = model_path
        self.segment_duration = segment_duration
        self.poll_interval = poll_interval
        self.temp_dir = temp_dir
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or os.cpu_count() or 1,
            thread_name_prefix="segment",
        )
        self._lock = threading.Lock()
        self._processed: Set[int] = set()
        self._pending: List[Future] = []
        self._run_id = 0
        self._running = False
        self._closed = False
        self._mode = TranscriptionMode.TRANSCRIBE
        self._language = "en"
        self._token: Optional[CancelToken] = None
        self._ticker: Optional[threading.Thread] = None
        self._ticker_stop = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def processed_segments(self) -> Set[int]:
        with self._lock:
            return set(self._processed)

    def segment_index(self, position: float) -> int:
        return int(position // self.segment_duration)

    def start(self, mode: TranscriptionMode, language: str) -> int:
        """
        Starts a new run, cancelling whatever run was active.

        Transcribe mode rewinds playback to the start; translate mode does not seek.

        Returns:
            The new run id.
        """
        with self._lock:
            if self._closed:
                raise SegSubError("Segment scheduler has been shut down.")
            self._cancel_run_locked()
            self._run_id += 1
            self._token = CancelToken(f"preview-{self._run_id}")
            self._processed.clear()
            self._mode = mode
            self._language = language
            self._running = True
            run_id = self._run_id

        self.state.reset_transcription()
        translating = mode == TranscriptionMode.TRANSLATE
        self.state.update(
            current_text=None if translating else "",
            translated_text="" if translating else None,
            is_translating=translating,
            selected_language=language,
            subtitles_hidden=False,
        )
        logger.info(f"Starting live {mode.value} run {run_id} for {self.source.path} (language={language})")

        if mode == TranscriptionMode.TRANSCRIBE:
            self.player.seek(0.0)
        self._start_ticker()
        return run_id

    def stop(self) -> None:
        """Stops watching playback. Jobs already dispatched finish and still publish."""
        self._stop_ticker()
        with self._lock:
            if self._running:
                logger.info(f"Stopping live run {self._run_id}")
            self._running = False
            self._processed.clear()

    def shutdown(self, wait_for_jobs: bool = False) -> None:
        """Cancels the active run, discards its late results and releases the worker pool."""
        self._stop_ticker()
        with self._lock:
            self._cancel_run_locked()
            self._run_id += 1
            self._running = False
            self._closed = True
            self._processed.clear()
        self._executor.shutdown(wait=wait_for_jobs)

    def on_position(self, position: Optional[float]) -> bool:
        """
        Handles one playback position observation.

        Returns:
            True if a new segment job was dispatched.
        """
        if position is None or position < 0 or position >= self.source.duration:
            return False
        index = self.segment_index(position)
        with self._lock:
            if not self._running or index in self._processed:
                return False
            self._processed.add(index)
            run_id = self._run_id
            token = self._token
            mode = self._mode
            language = self._language
            future = self._executor.submit(self._process_segment, run_id, token, index, mode, language)
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        logger.debug(f"Dispatched segment {index} for run {run_id}")
        return True

    def wait_for_pending(self, timeout: Optional[float] = None) -> bool:
        """Blocks until dispatched jobs finish. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _is_current(self, run_id: int, token: CancelToken) -> bool:
        return self._run_id == run_id and not token.is_cancelled

    def _process_segment(
        self,
        run_id: int,
        token: CancelToken,
        index: int,
        mode: TranscriptionMode,
        language: str
    ) -> None:
        field = "translated_text" if mode == TranscriptionMode.TRANSLATE else "current_text"

        def guard() -> bool:
            return self._is_current(run_id, token)

        self.state.update(guard=guard, **{field: PENDING_PLACEHOLDER})

        start = index * self.segment_duration
        end = min(start + self.segment_duration, self.source.duration)
        job = TranscriptionJob(
            model_path=self.model_path,
            language=language,
            translate=mode == TranscriptionMode.TRANSLATE,
        )
        audio_slice = None
        try:
            audio_slice = self.slicer.extract_slice(
                self.source, start, end, output_dir=self.temp_dir,
                prefix=f"segment_{index}", cancel_token=token,
            )
            result = TranscriptionResult(index=index, start_time=start)
            result.text = self.transcriber.run(
                audio_slice, job, cancel_token=token,
                on_warning=lambda message: self.state.report_error(message, guard=guard),
            )
        except CancelledError:
            logger.debug(f"Segment {index} of run {run_id} cancelled")
            return
        except (SegSubError, OSError) as e:
            logger.error(f"Segment {index} failed: {e}")
            self.state.update(guard=guard, last_error=f"Segment {index} failed: {e}", **{field: None})
            return
        except Exception as e:
            logger.error(f"Unexpected error processing segment {index}: {e}", exc_info=True)
            self.state.update(guard=guard, last_error=f"Segment {index} failed: {e}", **{field: None})
            return
        finally:
            if audio_slice is not None:
                remove_file_quietly(audio_slice.path)

        self._publish(result, field, guard, run_id)

    def _publish(self, result: TranscriptionResult, field: str, guard: Callable[[], bool], run_id: int) -> None:
        end = min(result.start_time + self.segment_duration, self.source.duration)
        if self.state.update(guard=guard, **{field: result.text}):
            logger.info(f"Segment {result.index} ({result.start_time:.0f}s-{end:.0f}s) published")
        else:
            logger.debug(f"Discarding late result for segment {result.index} of superseded run {run_id}")

    def _cancel_run_locked(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def _start_ticker(self) -> None:
        self._stop_ticker()
        if not self.poll_interval:
            return
        self._ticker_stop = threading.Event()
        self._ticker = threading.Thread(
            target=self._tick_loop, args=(self._ticker_stop,), name="segment-ticker", daemon=True,
        )
        self._ticker.start()

    def _stop_ticker(self) -> None:
        ticker = self._ticker
        self._ticker_stop.set()
        self._ticker = None
        if ticker is not None and ticker is not threading.current_thread():
            ticker.join(timeout=self.poll_interval or 1.0)

    def _tick_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.on_position(self.player.current_time())
            except Exception as e:
                logger.error(f"Playback position check failed: {e}", exc_info=True)
            stop_event.wait(self.poll_interval)
