"""Handles Speech-to-Text transcription by invoking the whisper-cli binary."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .exceptions import TranscriptionError, TranscriptionFailedError
from .models import AudioSlice, OutputFormat, TranscriptionJob
from .process_runner import CancelToken, ProcessOutcome, ProcessRunner, run_to_completion
from .utils import remove_file_quietly

logger = logging.getLogger(__name__)

WarningHandler = Callable[[str], None]


def default_thread_count() -> int:
    return os.cpu_count() or 1


class Transcriber(ABC):
    """Abstract base class for transcription services."""

    @abstractmethod
    def run(
        self,
        audio_slice: AudioSlice,
        job: TranscriptionJob,
        cancel_token: Optional[CancelToken] = None,
        on_warning: Optional[WarningHandler] = None
    ) -> str:
        """
        Transcribes one slice and returns the plain text.

        Raises:
            TranscriptionFailedError: If the transcription process fails.
            CancelledError: If the token is cancelled while the process runs.
        """
        pass

    @abstractmethod
    def run_to_file(
        self,
        audio_slice: AudioSlice,
        job: TranscriptionJob,
        output_base: str,
        cancel_token: Optional[CancelToken] = None,
        on_warning: Optional[WarningHandler] = None
    ) -> str:
        """
        Transcribes one slice into ``<output_base>.srt`` and returns that path.

        Raises:
            TranscriptionFailedError: If the process fails or writes no file.
            CancelledError: If the token is cancelled while the process runs.
        """
        pass


class WhisperCliTranscriber(Transcriber):
    """Runs one whisper-cli child process per slice."""

    def __init__(self, binary_path: str, runner: Optional[ProcessRunner] = None):
        """
        Initializes the WhisperCliTranscriber.

        Args:
            binary_path: Resolved path of the whisper-cli executable.
            runner: Process runner; tests inject a fake.
        """
        self.binary_path = binary_path
        self.runner = runner or ProcessRunner()
        logger.info(f"Initializing WhisperCliTranscriber with binary '{self.binary_path}'")

    def build_arguments(
        self,
        audio_path: str,
        job: TranscriptionJob,
        output_base: Optional[str] = None
    ) -> List[str]:
        """Builds the whisper-cli command line for one job."""
        args = [
            self.binary_path,
            "--file", audio_path,
            "--model", job.model_path,
            "--language", job.language,
        ]
        if job.output_format == OutputFormat.SUBTITLE_FILE:
            if not output_base:
                raise TranscriptionError("Subtitle-file output requires an output base path.")
            threads = job.threads or default_thread_count()
            args += ["-osrt", "-of", output_base, "--threads", str(threads)]
        else:
            args += ["--no-timestamps", "--no-prints"]
        if job.translate:
            args.append("--translate")
        return args

    def _execute(
        self,
        args: List[str],
        cancel_token: Optional[CancelToken],
        on_warning: Optional[WarningHandler]
    ) -> ProcessOutcome:
        logger.debug(f"Whisper command: {' '.join(args)}")
        try:
            outcome = run_to_completion(self.runner, args, cancel_token)
        except OSError as e:
            logger.error(f"Failed to run whisper process: {e}")
            raise TranscriptionFailedError(None, str(e), message=f"Could not start whisper process: {e}") from e

        stderr_text = outcome.stderr_text()
        if outcome.exit_code != 0:
            logger.error(f"Whisper exited with code {outcome.exit_code}: {stderr_text}")
            raise TranscriptionFailedError(outcome.exit_code, stderr_text)
        if stderr_text:
            logger.warning(f"Whisper stderr: {stderr_text}")
            if on_warning is not None:
                on_warning(f"Whisper reported: {stderr_text}")
        return outcome

    def run(
        self,
        audio_slice: AudioSlice,
        job: TranscriptionJob,
        cancel_token: Optional[CancelToken] = None,
        on_warning: Optional[WarningHandler] = None
    ) -> str:
        logger.info(f"Transcribing slice [{audio_slice.start_time:.1f}s, {audio_slice.end_time:.1f}s) "
                    f"(language={job.language}, translate={job.translate})")
        if not os.path.exists(audio_slice.path):
            raise FileNotFoundError(f"Audio file not found: {audio_slice.path}")
        plain_job = job
        if job.output_format != OutputFormat.PLAIN_TEXT:
            plain_job = TranscriptionJob(
                model_path=job.model_path, language=job.language, translate=job.translate,
                output_format=OutputFormat.PLAIN_TEXT, threads=job.threads,
            )
        outcome = self._execute(self.build_arguments(audio_slice.path, plain_job), cancel_token, on_warning)
        text = outcome.stdout_text()
        logger.debug(f"Whisper output: '{text}'")
        return text

    def run_to_file(
        self,
        audio_slice: AudioSlice,
        job: TranscriptionJob,
        output_base: str,
        cancel_token: Optional[CancelToken] = None,
        on_warning: Optional[WarningHandler] = None
    ) -> str:
        if not os.path.exists(audio_slice.path):
            raise FileNotFoundError(f"Audio file not found: {audio_slice.path}")
        srt_path = f"{output_base}.srt"
        # A stale file would make a failed run look successful
        remove_file_quietly(srt_path)

        file_job = job
        if job.output_format != OutputFormat.SUBTITLE_FILE:
            file_job = TranscriptionJob(
                model_path=job.model_path, language=job.language, translate=job.translate,
                output_format=OutputFormat.SUBTITLE_FILE, threads=job.threads,
            )
        args = self.build_arguments(audio_slice.path, file_job, output_base)
        try:
            outcome = self._execute(args, cancel_token, on_warning)
        except Exception:
            remove_file_quietly(srt_path)
            raise

        if not os.path.exists(srt_path):
            logger.error(f"Whisper exited 0 but {srt_path} was not written")
            raise TranscriptionFailedError(
                outcome.exit_code, outcome.stderr_text(),
                message=f"Expected subtitle file was not produced: {srt_path}",
            )
        logger.debug(f"Fragment written: {srt_path}")
        return srt_path
