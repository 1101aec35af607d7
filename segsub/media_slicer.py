"""Extracts time-bounded mono 16kHz PCM audio slices from media files using ffmpeg."""

import ffmpeg
import os
import logging
from typing import Optional

from .exceptions import (
    AudioExtractionError, CancelledError, FileSystemError, InvalidRangeError, NoAudioTrackError,
)
from .models import AudioSlice, SourceMedia
from .process_runner import CancelToken, ProcessRunner, run_to_completion
from .utils import ensure_dir_exists, remove_file_quietly, unique_temp_path

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHANNELS = 1
AUDIO_CODEC = 'pcm_s16le'


class MediaSlicer:
    """Probes media files and cuts audio slices in the format whisper-cli expects."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        temp_dir: Optional[str] = None,
        runner: Optional[ProcessRunner] = None,
        probe_timeout: Optional[float] = 60.0
    ):
        """
        Initializes the MediaSlicer.

        Args:
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            ffprobe_path: Optional path to the ffprobe executable.
            temp_dir: Default directory for slices. None means the system temp dir.
            runner: Process runner used to execute ffmpeg.
            probe_timeout: Seconds before a hanging ffprobe call is abandoned.
        """
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.ffprobe_cmd = ffprobe_path or 'ffprobe'
        self.temp_dir = temp_dir
        self.runner = runner or ProcessRunner()
        self.probe_timeout = probe_timeout
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}, ffprobe command: {self.ffprobe_cmd}")

    def probe(self, media_path: str) -> SourceMedia:
        """
        Reads the duration and audio stream count of a media file.

        Raises:
            FileNotFoundError: If the media file does not exist.
            AudioExtractionError: If ffprobe fails or reports no duration.
        """
        if not os.path.exists(media_path):
            raise FileNotFoundError(f"Media file not found: {media_path}")
        try:
            info = ffmpeg.probe(media_path, cmd=self.ffprobe_cmd, timeout=self.probe_timeout)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffprobe failed for {media_path}: {stderr_output}")
            raise AudioExtractionError(f"ffprobe failed: {stderr_output}") from e
        except Exception as e:
            logger.error(f"Unexpected error while probing {media_path}: {e}", exc_info=True)
            raise AudioExtractionError(f"Could not probe {media_path}: {e}") from e

        streams = info.get('streams', [])
        audio_streams = [s for s in streams if s.get('codec_type') == 'audio']
        duration = self._read_duration(info, audio_streams)
        if duration is None or duration <= 0:
            raise AudioExtractionError(f"Could not determine duration of {media_path}")

        source = SourceMedia(path=media_path, duration=duration, audio_stream_count=len(audio_streams))
        logger.info(f"Probed {media_path}: duration={duration:.3f}s, audio streams={len(audio_streams)}")
        return source

    @staticmethod
    def _read_duration(info: dict, audio_streams: list) -> Optional[float]:
        candidates = [info.get('format', {}).get('duration')]
        candidates.extend(s.get('duration') for s in audio_streams)
        for value in candidates:
            try:
                if value is not None:
                    return float(value)
            except (TypeError, ValueError):
                continue
        return None

    def build_command(self, source_path: str, start: float, end: float, output_path: str) -> list:
        """Compiles the ffmpeg argument list for one slice (input seeking, first audio stream only)."""
        stream = ffmpeg.input(source_path, ss=f"{start:.3f}", t=f"{end - start:.3f}")
        return (
            ffmpeg
            .output(stream['a:0'], output_path, acodec=AUDIO_CODEC, ar=SAMPLE_RATE, ac=CHANNELS, f='wav')
            .global_args('-nostdin', '-hide_banner', '-loglevel', 'error')
            .overwrite_output()
            .compile(cmd=self.ffmpeg_cmd)
        )

    def extract_slice(
        self,
        source: SourceMedia,
        start: float,
        end: float,
        output_dir: Optional[str] = None,
        prefix: str = "segment",
        cancel_token: Optional[CancelToken] = None
    ) -> AudioSlice:
        """
        Extracts [start, end) of the source's first audio track to a fresh WAV file.

        Only the requested range is decoded. The returned slice is owned by the
        caller, who must delete it. On failure no file is left behind.

        Args:
            source: The probed source media.
            start: Slice start in seconds.
            end: Slice end in seconds.
            output_dir: Directory for the slice; defaults to the slicer's temp dir.
            prefix: File name prefix, used to tell slices apart in logs.
            cancel_token: Token whose cancellation terminates ffmpeg.

        Returns:
            The AudioSlice describing the written file.

        Raises:
            InvalidRangeError: If not 0 <= start < end <= source.duration.
            NoAudioTrackError: If the source has no audio stream.
            AudioExtractionError: If ffmpeg fails or produces no output.
            CancelledError: If the token is cancelled during extraction.
        """
        if not (0 <= start < end <= source.duration):
            raise InvalidRangeError(start, end, source.duration)
        if not source.has_audio:
            raise NoAudioTrackError(f"No audio track found in {source.path}")

        directory = output_dir or self.temp_dir
        if directory:
            ensure_dir_exists(directory)
        output_audio_path = unique_temp_path(prefix, ".wav", directory)

        if os.path.exists(output_audio_path):
            logger.warning(f"Output audio file already exists, overwriting: {output_audio_path}")
            try:
                os.remove(output_audio_path)
            except OSError as e:
                raise FileSystemError(f"Could not remove existing audio file {output_audio_path}: {e}") from e

        args = self.build_command(source.path, start, end, output_audio_path)
        logger.debug(f"Extracting [{start:.3f}, {end:.3f}) of {source.path} to {output_audio_path}")
        try:
            outcome = run_to_completion(self.runner, args, cancel_token)
        except CancelledError:
            remove_file_quietly(output_audio_path)
            raise
        except OSError as e:
            remove_file_quietly(output_audio_path)
            logger.error(f"Could not start ffmpeg ({self.ffmpeg_cmd}): {e}")
            raise AudioExtractionError(f"Could not start ffmpeg: {e}") from e

        if outcome.exit_code != 0:
            stderr_output = outcome.stderr_text() or "No stderr output"
            logger.error(f"ffmpeg exited with {outcome.exit_code} for {source.path}: {stderr_output}")
            # Attempt cleanup if extraction failed mid-way
            remove_file_quietly(output_audio_path)
            raise AudioExtractionError(f"ffmpeg failed: {stderr_output}")
        if not os.path.exists(output_audio_path):
            raise AudioExtractionError(f"ffmpeg reported success but wrote no file: {output_audio_path}")

        logger.debug(f"Slice written: {output_audio_path}")
        return AudioSlice(path=output_audio_path, start_time=start, end_time=end)
