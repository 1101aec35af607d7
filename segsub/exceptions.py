"""Custom Exceptions for the SegSub application."""

from typing import Optional


class SegSubError(Exception):
    """Base class for exceptions in this module."""
    pass

class ConfigurationError(SegSubError):
    """Exception raised for errors in configuration loading."""
    pass

class BinaryNotFoundError(ConfigurationError):
    """No executable transcription binary could be resolved."""
    pass

class ModelNotFoundError(ConfigurationError):
    """No model file could be resolved."""
    pass

class AudioExtractionError(SegSubError):
    """Exception raised for errors during audio extraction."""
    pass

class InvalidRangeError(AudioExtractionError):
    """Requested slice range lies outside the source or is empty."""

    def __init__(self, start: float, end: float, duration: float):
        self.start = start
        self.end = end
        self.duration = duration
        super().__init__(
            f"Invalid slice range [{start:.3f}, {end:.3f}) for source of duration {duration:.3f}s"
        )

class NoAudioTrackError(AudioExtractionError):
    """The source container has no audio stream."""
    pass

class TranscriptionError(SegSubError):
    """Exception raised for errors during transcription."""
    pass

class TranscriptionFailedError(TranscriptionError):
    """The transcription binary exited non-zero or produced no output file."""

    def __init__(self, exit_code: Optional[int], stderr: str = "", message: Optional[str] = None):
        self.exit_code = exit_code
        self.stderr = stderr
        if message is None:
            message = f"Transcription failed with exit code {exit_code}"
            if stderr:
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)

class CancelledError(SegSubError):
    """The enclosing run was cancelled before the work finished."""
    pass

class FormattingError(SegSubError):
    """Exception raised for errors while reading or merging subtitle fragments."""
    pass

class ExportError(SegSubError):
    """Exception raised when a full-file export cannot produce an output."""
    pass

class NoValidFragmentsError(ExportError):
    """Every export window failed, so there is nothing to merge."""
    pass

class FileSystemError(SegSubError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass
