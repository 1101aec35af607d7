"""Observable state shared between the pipelines and the UI."""

import logging
import threading
from dataclasses import dataclass, fields, replace
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

PENDING_PLACEHOLDER = "..."


@dataclass(frozen=True)
class PipelineSnapshot:
    current_text: Optional[str] = None
    translated_text: Optional[str] = None
    is_translating: bool = False
    last_error: Optional[str] = None
    export_status: Optional[str] = None
    export_progress: float = 0.0
    export_completed: bool = False
    subtitles_hidden: bool = False
    selected_language: str = "en"


FIELD_NAMES = frozenset(f.name for f in fields(PipelineSnapshot))

Listener = Callable[[PipelineSnapshot], None]


class PipelineState:
    """
    Single-owner state object. Every mutation goes through one lock, and
    listeners are notified in the order mutations were applied, so
    concurrent segment completions never interleave partial writes.
    """

    def __init__(self, selected_language: str = "en"):
        self._lock = threading.RLock()
        self._state = PipelineSnapshot(selected_language=selected_language)
        self._listeners: List[Listener] = []
        self._completion_timer: Optional[threading.Timer] = None
        self._completion_serial = 0

    def snapshot(self) -> PipelineSnapshot:
        with self._lock:
            return self._state

    def __getattr__(self, name: str):
        # Read-only attribute access to the current snapshot (state.current_text)
        if name in FIELD_NAMES:
            return getattr(self.snapshot(), name)
        raise AttributeError(name)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a listener called after each mutation. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def update(self, guard: Optional[Callable[[], bool]] = None, **changes) -> bool:
        """
        Applies field changes atomically.

        Args:
            guard: Evaluated under the lock; when it returns False nothing is
                   written. Pipelines use it to drop results of superseded runs.
            **changes: Field names and new values.

        Returns:
            True if the change was applied.
        """
        unknown = set(changes) - FIELD_NAMES
        if unknown:
            raise AttributeError(f"Unknown pipeline state field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            if guard is not None and not guard():
                return False
            self._apply(replace(self._state, **changes))
        return True

    def advance_export_progress(self, value: float, guard: Optional[Callable[[], bool]] = None) -> float:
        """
        Raises export progress to ``value`` unless it is already higher. Returns the
        current value. Nothing is written when ``guard`` returns False.
        """
        value = min(max(value, 0.0), 1.0)
        with self._lock:
            if (guard is None or guard()) and value > self._state.export_progress:
                self._apply(replace(self._state, export_progress=value))
            return self._state.export_progress

    def report_error(self, message: str, guard: Optional[Callable[[], bool]] = None) -> bool:
        """Replaces last_error. Errors do not stack."""
        return self.update(guard=guard, last_error=message)

    def begin_export(self, status: str) -> None:
        with self._lock:
            self._cancel_completion_timer()
            self._apply(replace(
                self._state, export_status=status, export_progress=0.0, export_completed=False,
            ))

    def fail_export(self, message: str) -> None:
        """Ends a failed export: status, completion flag and progress are cleared."""
        with self._lock:
            self._cancel_completion_timer()
            self._apply(replace(
                self._state, export_status=None, export_completed=False, export_progress=0.0,
                last_error=message,
            ))

    def mark_export_completed(self, clear_after: float = 3.0) -> None:
        """Sets export_completed and schedules it (and the progress) to clear after ``clear_after`` seconds."""
        with self._lock:
            self._cancel_completion_timer()
            self._completion_serial += 1
            serial = self._completion_serial
            self._apply(replace(
                self._state, export_status=None, export_progress=1.0, export_completed=True,
            ))
            timer = threading.Timer(clear_after, self._clear_completion, args=(serial,))
            timer.daemon = True
            self._completion_timer = timer
            timer.start()

    def _clear_completion(self, serial: int) -> None:
        with self._lock:
            if serial != self._completion_serial:
                return
            self._completion_timer = None
            self._apply(replace(self._state, export_completed=False, export_progress=0.0))

    def _cancel_completion_timer(self) -> None:
        if self._completion_timer is not None:
            self._completion_timer.cancel()
            self._completion_timer = None
        self._completion_serial += 1

    def reset_transcription(self) -> None:
        """Clears live-preview results; export fields are left alone."""
        with self._lock:
            self._apply(replace(
                self._state, current_text=None, translated_text=None, is_translating=False,
            ))

    def reset(self) -> None:
        """Clears everything pipeline-owned. Called when the source changes or the pipeline is torn down."""
        with self._lock:
            self._cancel_completion_timer()
            self._apply(PipelineSnapshot(selected_language=self._state.selected_language))

    def close(self) -> None:
        with self._lock:
            self._cancel_completion_timer()

    def _apply(self, new_state: PipelineSnapshot) -> None:
        # Caller holds the lock
        if new_state == self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"Pipeline state listener failed: {e}", exc_info=True)
