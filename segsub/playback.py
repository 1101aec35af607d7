"""Playback clock used when no real media player drives the live preview."""

import threading
import time
from typing import Callable, Optional

from .segment_scheduler import PlaybackClock


class WallClockPlayback(PlaybackClock):
    """Advances the position in real time from the last seek, up to ``duration``."""

    def __init__(self, duration: float, rate: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.duration = duration
        self.rate = rate
        self._clock = clock
        self._lock = threading.Lock()
        self._origin = clock()
        self._offset = 0.0

    def current_time(self) -> Optional[float]:
        with self._lock:
            position = self._offset + (self._clock() - self._origin) * self.rate
        return min(position, self.duration)

    def seek(self, seconds: float) -> None:
        with self._lock:
            self._offset = max(0.0, min(seconds, self.duration))
            self._origin = self._clock()

    @property
    def finished(self) -> bool:
        return self.current_time() >= self.duration
