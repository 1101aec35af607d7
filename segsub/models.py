"""Data models for SegSub."""

import enum
from dataclasses import dataclass, field
from typing import List, Optional


class TranscriptionMode(enum.Enum):
    TRANSCRIBE = "transcribe"
    TRANSLATE = "translate"


class OutputFormat(enum.Enum):
    PLAIN_TEXT = "plain_text"
    SUBTITLE_FILE = "subtitle_file"


@dataclass(frozen=True)
class SourceMedia:
    """An opened input file. Duration is probed once and never changes."""
    path: str
    duration: float
    audio_stream_count: int = 1

    @property
    def has_audio(self) -> bool:
        return self.audio_stream_count > 0


@dataclass(frozen=True)
class AudioSlice:
    """A temporary mono/16kHz/16-bit PCM WAV covering [start_time, end_time) of a source."""
    path: str
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class Window:
    """One fixed-length export window, numbered by its position in the source."""
    index: int
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class TranscriptionJob:
    """Configuration for one invocation of the transcription binary."""
    model_path: str
    language: str = "en"
    translate: bool = False
    output_format: OutputFormat = OutputFormat.PLAIN_TEXT
    threads: Optional[int] = None


@dataclass
class TranscriptionResult:
    """Output of one segment or window, tagged with its index for ordering."""
    index: int
    text: Optional[str] = None
    subtitle_fragment_path: Optional[str] = None
    start_time: float = 0.0


@dataclass
class SubtitleEntry:
    """One block of a subtitle file."""
    sequence_number: int
    timecode_block: str
    text: str

    def to_srt(self) -> str:
        return f"{self.sequence_number}\n{self.timecode_block}\n{self.text}"


@dataclass
class ExportReport:
    """Summary of a finished export."""
    output_path: str
    total_windows: int
    completed_windows: List[int] = field(default_factory=list)
    failed_windows: List[int] = field(default_factory=list)
    entry_count: int = 0
