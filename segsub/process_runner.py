"""Child-process spawning and cancellation for external tools (ffmpeg, whisper-cli)."""

import logging
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Set

from .exceptions import CancelledError

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 2.0


class ProcessHandle:
    """A running child process with fully captured stdout/stderr."""

    def __init__(self, popen: subprocess.Popen, args: List[str]):
        self._popen = popen
        self.args = args
        self._stdout = b""
        self._stderr = b""
        self._waited = False
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._popen.pid

    def wait(self) -> int:
        """Blocks until the process exits, draining both pipes. Returns the exit code."""
        with self._lock:
            if not self._waited:
                out, err = self._popen.communicate()
                self._stdout = out or b""
                self._stderr = err or b""
                self._waited = True
        return self._popen.returncode

    def stdout(self) -> bytes:
        return self._stdout

    def stderr(self) -> bytes:
        return self._stderr

    def is_running(self) -> bool:
        return self._popen.poll() is None

    def terminate(self) -> None:
        """Terminates the process, escalating to kill if it ignores SIGTERM."""
        if not self.is_running():
            return
        logger.info(f"Terminating child process {self.pid}: {self.args[0]}")
        try:
            self._popen.terminate()
            self._popen.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {self.pid} did not exit after terminate, killing it.")
            self._popen.kill()
        except OSError as e:
            # Process already reaped by the thread blocked in wait()
            logger.debug(f"Terminate of process {self.pid} raced with exit: {e}")


class ProcessRunner:
    """Spawns child processes. Tests substitute a fake with the same interface."""

    def spawn(self, args: List[str]) -> ProcessHandle:
        """
        Starts a child process with stdout and stderr piped.

        Raises:
            OSError: If the executable cannot be started.
        """
        logger.debug(f"Spawning: {' '.join(args)}")
        popen = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        return ProcessHandle(popen, args)


class CancelToken:
    """
    Cancellation flag shared by all work started for one run.

    Child processes registered through track() are terminated when the
    token is cancelled, including processes registered after cancellation.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = threading.Event()
        self._handles: Set[ProcessHandle] = set()
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            handles = list(self._handles)
        if handles:
            logger.info(f"Cancelling run {self.name or '<unnamed>'}: terminating {len(handles)} live process(es)")
        for handle in handles:
            handle.terminate()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise CancelledError(f"Run {self.name or '<unnamed>'} was cancelled")

    @contextmanager
    def track(self, handle: ProcessHandle) -> Iterator[ProcessHandle]:
        with self._lock:
            cancelled = self._cancelled.is_set()
            if not cancelled:
                self._handles.add(handle)
        if cancelled:
            handle.terminate()
            raise CancelledError(f"Run {self.name or '<unnamed>'} was cancelled")
        try:
            yield handle
        finally:
            with self._lock:
                self._handles.discard(handle)


@dataclass
class ProcessOutcome:
    exit_code: int
    stdout: bytes
    stderr: bytes

    def stdout_text(self) -> str:
        return self.stdout.decode('utf-8', errors='replace').strip()

    def stderr_text(self) -> str:
        return self.stderr.decode('utf-8', errors='replace').strip()


def run_to_completion(
    runner: ProcessRunner,
    args: List[str],
    cancel_token: Optional[CancelToken] = None
) -> ProcessOutcome:
    """
    Spawns a process, waits for it and returns its exit code and output.

    Raises:
        OSError: If the process cannot be started.
        CancelledError: If the token was cancelled before or while the process ran.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    handle = runner.spawn(args)
    if cancel_token is None:
        exit_code = handle.wait()
    else:
        with cancel_token.track(handle):
            exit_code = handle.wait()
        cancel_token.raise_if_cancelled()
    return ProcessOutcome(exit_code=exit_code, stdout=handle.stdout(), stderr=handle.stderr())
