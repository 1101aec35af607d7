"""The open document: one source file, its pipelines and their shared state."""

import logging
import threading
from typing import Callable, Optional

from .exceptions import ConfigurationError, SegSubError
from .export_pipeline import ExportPipeline
from .media_slicer import MediaSlicer
from .models import ExportReport, SourceMedia, TranscriptionMode
from .path_resolver import BinaryResolver, ModelResolver
from .pipeline_state import PipelineState
from .playback import WallClockPlayback
from .process_runner import CancelToken, ProcessRunner
from .segment_scheduler import PlaybackClock, SegmentScheduler
from .transcriber import Transcriber, WhisperCliTranscriber

logger = logging.getLogger(__name__)

TranscriberFactory = Callable[[str], Transcriber]


class Session:
    """
    Owns the active SourceMedia and tears down its pipelines when the source
    is replaced or closed. The UI calls these methods and renders ``state``.
    """

    def __init__(
        self,
        config: dict,
        state: Optional[PipelineState] = None,
        slicer: Optional[MediaSlicer] = None,
        binary_resolver: Optional[BinaryResolver] = None,
        model_resolver: Optional[ModelResolver] = None,
        transcriber_factory: Optional[TranscriberFactory] = None,
        runner: Optional[ProcessRunner] = None
    ):
        self.config = config
        self.state = state or PipelineState(selected_language=config.get('language', 'en'))
        self.runner = runner or ProcessRunner()
        self.slicer = slicer or MediaSlicer(
            ffmpeg_path=config.get('ffmpeg_path'),
            ffprobe_path=config.get('ffprobe_path'),
            temp_dir=config.get('temp_dir'),
            runner=self.runner,
        )
        self.binary_resolver = binary_resolver or BinaryResolver(
            bundle_dir=config.get('bundle_dir'),
            user_override=config.get('whisper_path'),
        )
        self.model_resolver = model_resolver or ModelResolver(
            configured_path=config.get('model_path'),
            bundle_dir=config.get('bundle_dir'),
            default_model=config.get('model_name', 'base'),
        )
        self._transcriber_factory = transcriber_factory or (
            lambda binary: WhisperCliTranscriber(binary, runner=self.runner)
        )
        self._lock = threading.Lock()
        self.source: Optional[SourceMedia] = None
        self.player: Optional[PlaybackClock] = None
        self._scheduler: Optional[SegmentScheduler] = None
        self._export_token: Optional[CancelToken] = None
        self._last_mode: Optional[TranscriptionMode] = None

    @property
    def scheduler(self) -> Optional[SegmentScheduler]:
        return self._scheduler

    def open_source(self, media_path: str, player: Optional[PlaybackClock] = None) -> SourceMedia:
        """
        Replaces the active source. Work started for the previous source is
        cancelled and its results can no longer reach the state.

        Without a player, a wall-clock playback over the source duration is used.

        Raises:
            FileNotFoundError, AudioExtractionError: If the file cannot be probed.
        """
        self.close()
        source = self.slicer.probe(media_path)
        with self._lock:
            self.source = source
            self.player = player if player is not None else WallClockPlayback(source.duration)
        logger.info(f"Opened {media_path} ({source.duration:.1f}s)")
        return source

    def close(self) -> None:
        """Tears down the active pipelines and clears the state."""
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
            export_token, self._export_token = self._export_token, None
            closing = self.source
            self.source = None
            self.player = None
            self._last_mode = None
        if scheduler is not None:
            scheduler.shutdown()
        if export_token is not None:
            export_token.cancel()
        self.state.reset()
        if closing is not None:
            logger.info(f"Closed {closing.path}")

    def _resolve(self, model: Optional[str]):
        """Resolves binary and model; configuration errors are surfaced once, then raised."""
        try:
            binary = self.binary_resolver.resolve()
            model_path = self.model_resolver.resolve(model)
        except ConfigurationError as e:
            self.state.report_error(str(e))
            raise
        return self._transcriber_factory(binary), model_path

    def _require_source(self) -> SourceMedia:
        if self.source is None:
            raise SegSubError("No media file is open.")
        return self.source

    def _start_preview(self, mode: TranscriptionMode, language: str, model: Optional[str]) -> int:
        source = self._require_source()
        transcriber, model_path = self._resolve(model)
        with self._lock:
            scheduler = self._scheduler
            if scheduler is None:
                scheduler = SegmentScheduler(
                    state=self.state,
                    slicer=self.slicer,
                    transcriber=transcriber,
                    source=source,
                    player=self.player,
                    model_path=model_path,
                    segment_duration=self.config.get('segment_duration', 10.0),
                    poll_interval=self.config.get('poll_interval', 1.0),
                    max_workers=self.config.get('max_workers'),
                    temp_dir=self.config.get('temp_dir'),
                )
                self._scheduler = scheduler
            else:
                scheduler.transcriber = transcriber
                scheduler.model_path = model_path
            self._last_mode = mode
        return scheduler.start(mode, language)

    def transcribe(self, language: Optional[str] = None, model: Optional[str] = None) -> int:
        """Starts (or restarts) live transcription from the beginning of the file."""
        return self._start_preview(
            TranscriptionMode.TRANSCRIBE, language or self.config.get('language', 'en'), model,
        )

    def translate(self, language: str, model: Optional[str] = None) -> int:
        """Starts (or restarts) live translation from the current position."""
        return self._start_preview(TranscriptionMode.TRANSLATE, language, model)

    def stop_preview(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    def set_subtitles_hidden(self, hidden: bool) -> None:
        self.state.update(subtitles_hidden=hidden)

    def export(
        self,
        destination: str,
        language: Optional[str] = None,
        translate: Optional[bool] = None,
        model: Optional[str] = None
    ) -> ExportReport:
        """
        Exports subtitles for the whole source. Blocks until done.

        ``translate`` defaults to whether the most recent live run was a translation.
        """
        source = self._require_source()
        transcriber, model_path = self._resolve(model)
        if translate is None:
            translate = self._last_mode == TranscriptionMode.TRANSLATE
        language = language or self.state.selected_language
        token = CancelToken(f"export-{source.path}")
        with self._lock:
            if self._export_token is not None:
                self._export_token.cancel()
            self._export_token = token
        pipeline = ExportPipeline(
            state=self.state,
            slicer=self.slicer,
            transcriber=transcriber,
            temp_dir=self.config.get('temp_dir'),
            window_duration=self.config.get('window_duration', 60.0),
            min_window_duration=self.config.get('min_window_duration', 1.0),
            min_slice_bytes=self.config.get('min_slice_bytes', 1000),
            max_workers=self.config.get('max_workers'),
            threads=self.config.get('threads'),
            completion_clear_delay=self.config.get('completion_clear_delay', 3.0),
            offset_timecodes=self.config.get('offset_timecodes', True),
        )
        try:
            return pipeline.export(source, destination, model_path, language, translate, cancel_token=token)
        finally:
            with self._lock:
                if self._export_token is token:
                    self._export_token = None

    def cancel_export(self) -> None:
        with self._lock:
            token = self._export_token
        if token is not None:
            token.cancel()
