"""Handles loading configuration from YAML files."""

import yaml
import os
import logging
import tempfile
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "SegSub"

DEFAULT_CONFIG: Dict[str, Any] = {
    'temp_dir': os.path.join(tempfile.gettempdir(), "segsub"),
    'log_dir': "logs",
    'log_file': "segsub.log",
    'ffmpeg_path': None,
    'ffprobe_path': None,
    'whisper_path': None,
    'bundle_dir': None,
    'model_path': None,
    'model_name': "base",
    'language': "en",
    'segment_duration': 10.0,
    'poll_interval': 1.0,
    'window_duration': 60.0,
    'min_window_duration': 1.0,
    'min_slice_bytes': 1000,
    'max_workers': None,
    'threads': None,
    'completion_clear_delay': 3.0,
    'offset_timecodes': True,
}

POSITIVE_NUMBER_KEYS = (
    'segment_duration', 'poll_interval', 'window_duration', 'completion_clear_delay',
)


class ConfigLoader:
    """Loads configuration settings from a YAML file."""

    def load_config(self, config_path: str) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Args:
            config_path: The path to the YAML configuration file.

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
             logger.error(f"Configuration path is not a file: {config_path}")
             raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except IOError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if config is None:
            # An empty file is a valid "use every default" configuration
            config = {}
        if not isinstance(config, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config

    def with_defaults(self, config: Optional[dict] = None) -> dict:
        """
        Merges a loaded configuration over DEFAULT_CONFIG and validates it.

        Unknown keys are kept (and logged) so newer config files still load.

        Raises:
            ConfigurationError: If a duration or count has an invalid value.
        """
        merged = dict(DEFAULT_CONFIG)
        for key, value in (config or {}).items():
            if key not in DEFAULT_CONFIG:
                logger.warning(f"Unknown configuration key '{key}' (kept as-is).")
            if value is None and key in DEFAULT_CONFIG:
                continue
            merged[key] = value

        for key in POSITIVE_NUMBER_KEYS:
            merged[key] = self._as_number(key, merged[key])
            if merged[key] <= 0:
                raise ConfigurationError(f"Configuration value '{key}' must be positive, got {merged[key]}")
        merged['min_window_duration'] = self._as_number('min_window_duration', merged['min_window_duration'])
        if merged['min_window_duration'] < 0:
            raise ConfigurationError("Configuration value 'min_window_duration' cannot be negative.")

        for key in ('max_workers', 'threads', 'min_slice_bytes'):
            if merged[key] is None:
                continue
            try:
                merged[key] = int(merged[key])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Configuration value '{key}' must be an integer: {merged[key]!r}") from e
            if merged[key] < 0 or (key != 'min_slice_bytes' and merged[key] == 0):
                raise ConfigurationError(f"Configuration value '{key}' is out of range: {merged[key]}")

        merged['offset_timecodes'] = bool(merged['offset_timecodes'])
        return merged

    @staticmethod
    def _as_number(key: str, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Configuration value '{key}' must be a number: {value!r}") from e
