"""Ordered lookup of the whisper-cli binary and model files."""

import logging
import os
import shutil
import sys
from typing import Callable, List, Optional, Sequence, Tuple

import appdirs

from .config_loader import APP_NAME
from .exceptions import BinaryNotFoundError, ModelNotFoundError
from .model_catalog import model_filename

logger = logging.getLogger(__name__)

BINARY_NAMES = ("whisper-cli", "whisper")

# (description, callable returning a candidate path or None)
Strategy = Tuple[str, Callable[[], Optional[str]]]


def default_bundle_dir() -> str:
    """Directory the application runs from (the PyInstaller unpack dir when frozen)."""
    bundle = getattr(sys, '_MEIPASS', None)
    if bundle:
        return bundle
    return os.path.dirname(os.path.abspath(sys.argv[0] or "."))


def default_data_dir() -> str:
    return appdirs.user_data_dir(APP_NAME)


def _ensure_executable(path: str) -> bool:
    """Adds execute bits to a file that lacks them. Returns True if the file is executable."""
    if os.access(path, os.X_OK):
        return True
    try:
        mode = os.stat(path).st_mode
        os.chmod(path, mode | 0o755)
        logger.info(f"Added execute permission to {path}")
    except OSError as e:
        logger.debug(f"Could not set execute permission on {path}: {e}")
        return False
    return os.access(path, os.X_OK)


def _first(strategies: Sequence[Strategy], accept: Callable[[str], bool]) -> Optional[str]:
    for description, strategy in strategies:
        candidate = strategy()
        if not candidate:
            logger.debug(f"{description}: no candidate")
            continue
        if accept(candidate):
            logger.debug(f"{description}: using {candidate}")
            return candidate
        logger.debug(f"{description}: rejected {candidate}")
    return None


class BinaryResolver:
    """
    Finds the transcription executable.

    Precedence: bundled binary, then the bundle's bin/ directory, then the
    user-configured override. Pass ``strategies`` to replace the list.
    """

    def __init__(
        self,
        bundle_dir: Optional[str] = None,
        user_override: Optional[str] = None,
        binary_names: Sequence[str] = BINARY_NAMES,
        strategies: Optional[List[Strategy]] = None
    ):
        self.bundle_dir = bundle_dir or default_bundle_dir()
        self.user_override = user_override
        self.binary_names = tuple(binary_names)
        self.strategies = strategies if strategies is not None else self.default_strategies()

    def default_strategies(self) -> List[Strategy]:
        strategies: List[Strategy] = []
        for name in self.binary_names:
            strategies.append((f"bundled {name}", lambda n=name: os.path.join(self.bundle_dir, n)))
        for name in self.binary_names:
            strategies.append((f"bin/{name}", lambda n=name: os.path.join(self.bundle_dir, "bin", n)))
        strategies.append(("user override", self._user_override_path))
        return strategies

    def _user_override_path(self) -> Optional[str]:
        if not self.user_override:
            return None
        override = os.path.expanduser(self.user_override)
        if os.path.dirname(override):
            return override
        # Bare command name: look it up on PATH
        return shutil.which(override)

    @staticmethod
    def _is_usable(path: str) -> bool:
        return os.path.isfile(path) and _ensure_executable(path)

    def resolve(self) -> str:
        """
        Returns the first candidate that is an executable file.

        Raises:
            BinaryNotFoundError: If no strategy yields an executable.
        """
        path = _first(self.strategies, self._is_usable)
        if path is None:
            logger.error("Whisper binary not found in any location")
            raise BinaryNotFoundError(
                "Transcription binary (whisper-cli) not found. Bundle it with the application "
                "or set 'whisper_path' in the configuration."
            )
        logger.info(f"Using whisper binary: {path}")
        return path


class ModelResolver:
    """
    Finds a model file.

    Precedence: the last explicitly configured path if it still exists, then
    the model file name in the per-user data directory, then the bundle.
    """

    def __init__(
        self,
        configured_path: Optional[str] = None,
        data_dir: Optional[str] = None,
        bundle_dir: Optional[str] = None,
        default_model: str = "base",
        strategies: Optional[Callable[[str, bool], List[Strategy]]] = None
    ):
        self.configured_path = configured_path
        self.data_dir = data_dir or default_data_dir()
        self.bundle_dir = bundle_dir or default_bundle_dir()
        self.default_model = default_model
        self._strategy_factory = strategies or self.default_strategies

    @property
    def models_dir(self) -> str:
        return os.path.join(self.data_dir, "models")

    def default_strategies(self, filename: str, use_configured: bool = True) -> List[Strategy]:
        configured = None
        if use_configured and self.configured_path:
            configured = os.path.expanduser(self.configured_path)
        return [
            ("configured model path", lambda: configured),
            ("user data directory", lambda: os.path.join(self.models_dir, filename)),
            ("bundled model", lambda: os.path.join(self.bundle_dir, filename)),
            ("bundled bin/ model", lambda: os.path.join(self.bundle_dir, "bin", filename)),
            ("bundled models/ model", lambda: os.path.join(self.bundle_dir, "models", filename)),
        ]

    def resolve(self, model: Optional[str] = None) -> str:
        """
        Resolves a model tier name, file name or path to an existing file.

        An existing file path passed as ``model`` wins over every strategy. The
        configured path is only consulted when no specific model is requested
        or when it points at the requested file name.

        Raises:
            ModelNotFoundError: If nothing resolves to a file.
        """
        requested = model or self.default_model
        if model and os.path.isfile(os.path.expanduser(model)):
            return os.path.expanduser(model)
        filename = model_filename(requested)
        use_configured = model is None or (
            bool(self.configured_path) and os.path.basename(self.configured_path) == filename
        )
        path = _first(self._strategy_factory(filename, use_configured), os.path.isfile)
        if path is None:
            logger.error(f"Model file not found: {filename}")
            raise ModelNotFoundError(
                f"Model file '{filename}' not found. Download it into {self.models_dir} "
                "or set 'model_path' in the configuration."
            )
        logger.info(f"Using model: {path}")
        return path
