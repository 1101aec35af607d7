"""Command-Line Interface handler for SegSub."""

import argparse
import logging
import os
import sys
import time
from typing import List, Optional

from tqdm import tqdm

from .config_loader import ConfigLoader
from .log_setup import setup_logging
from .exceptions import SegSubError, ConfigurationError
from .model_catalog import AVAILABLE_MODELS, installed_models
from .path_resolver import ModelResolver
from .pipeline_state import PENDING_PLACEHOLDER, PipelineSnapshot
from .session import Session

logger = logging.getLogger(__name__) # Get logger for this module

LANGUAGE_CHOICES = ["en", "ru", "de", "fr", "es", "zh", "ja", "it", "tr"]


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Options shared by every sub-command and by the batch script."""
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to the configuration YAML file. Defaults are used if it does not exist."
    )
    parser.add_argument(
        "--temp-dir",
        default=None, # Default taken from config file
        help="Override the temporary directory specified in the config file."
    )
    parser.add_argument(
        "--whisper-path",
        default=None,
        help="Path to the whisper-cli executable (used when no bundled binary is found)."
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Model tier (tiny, base, small, medium, large), model file name or path."
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level for console and file output."
    )


def load_settings(args: argparse.Namespace) -> dict:
    """
    Loads the YAML config (if present), merges defaults and applies CLI overrides.

    Raises:
        ConfigurationError: If the file exists but is invalid.
    """
    config_loader = ConfigLoader()
    config = {}
    if os.path.exists(args.config):
        config = config_loader.load_config(args.config)
    else:
        logger.info(f"No configuration file at {args.config}; using defaults.")
    config = config_loader.with_defaults(config)

    if args.temp_dir:
        logger.info(f"Overriding temp_dir from config with CLI argument: {args.temp_dir}")
        config['temp_dir'] = args.temp_dir
    if args.whisper_path:
        logger.info(f"Overriding whisper_path from config with CLI argument: {args.whisper_path}")
        config['whisper_path'] = args.whisper_path
    if getattr(args, 'language', None):
        config['language'] = args.language
    return config


class CLIHandler:
    """Parses arguments and runs the requested SegSub command."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            description="SegSub: generate subtitles for media files with whisper-cli.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter # Show defaults in help
        )
        subparsers = parser.add_subparsers(dest="command", required=True)

        export_parser = subparsers.add_parser(
            "export", help="Transcribe a whole file into an .srt file.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        export_parser.add_argument("media", help="Path to the input video or audio file.")
        export_parser.add_argument(
            "-o", "--output",
            default=None,
            help="Destination .srt path. Defaults to the media path with an .srt extension."
        )
        export_parser.add_argument("-l", "--language", default=None, choices=LANGUAGE_CHOICES,
                                   help="Spoken language code.")
        export_parser.add_argument("--translate", action="store_true",
                                   help="Translate to English instead of transcribing.")
        add_common_arguments(export_parser)

        preview_parser = subparsers.add_parser(
            "preview", help="Print live subtitles while a simulated playback runs.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        preview_parser.add_argument("media", help="Path to the input video or audio file.")
        preview_parser.add_argument("-l", "--language", default=None, choices=LANGUAGE_CHOICES,
                                    help="Spoken language code (target language in translate mode).")
        preview_parser.add_argument("--translate", action="store_true",
                                    help="Run the live preview in translation mode.")
        preview_parser.add_argument("--rate", type=float, default=1.0,
                                    help="Playback speed of the simulated player.")
        add_common_arguments(preview_parser)

        models_parser = subparsers.add_parser(
            "models", help="List the model tiers and which are installed.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        add_common_arguments(models_parser)
        return parser

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Parses arguments, sets up logging, loads config, and dispatches the command."""
        args = self.parser.parse_args(argv)

        log_level = getattr(logging, args.log_level.upper(), logging.INFO)
        # Temporarily setup basic logging to catch config loading errors
        setup_logging(log_level=log_level, log_dir='logs', log_file='segsub_init.log')

        try:
            config = load_settings(args)
        except ConfigurationError as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}")
            sys.exit(1)

        # The preview prints subtitles to stdout; keep log records in the file only
        setup_logging(
            log_level=log_level,
            log_dir=config.get('log_dir', 'logs'),
            log_file=config.get('log_file', 'segsub.log'),
            console=args.command != "preview",
        )

        try:
            if args.command == "export":
                self._run_export(args, config)
            elif args.command == "preview":
                self._run_preview(args, config)
            else:
                self._run_models(config)
            sys.exit(0)
        except SegSubError as e:
            logger.error(f"A SegSub error occurred: {e}")
            sys.stderr.write(f"Error: {e}\n")
            sys.exit(1)
        except FileNotFoundError as e:
            logger.error(str(e))
            sys.stderr.write(f"Error: {e}\n")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2) # Use a different exit code for unexpected crashes

    def _run_export(self, args: argparse.Namespace, config: dict) -> None:
        if not os.path.isfile(args.media):
            raise FileNotFoundError(f"Input media file not found or is not a file: {args.media}")
        destination = args.output or os.path.splitext(args.media)[0] + ".srt"
        session = Session(config)
        session.open_source(args.media)

        with tqdm(total=100, unit="%", desc="Exporting") as pbar:
            def on_change(snapshot: PipelineSnapshot) -> None:
                percent = int(snapshot.export_progress * 100)
                if percent > pbar.n:
                    pbar.update(percent - pbar.n)
                if snapshot.export_status:
                    pbar.set_description(snapshot.export_status[:40])

            unsubscribe = session.state.subscribe(on_change)
            try:
                report = session.export(destination, language=args.language, translate=args.translate,
                                        model=args.model)
            finally:
                unsubscribe()
                session.close()

        if report.failed_windows:
            tqdm.write(f"Warning: window(s) {report.failed_windows} failed and are missing from the output.")
        tqdm.write(f"Wrote {report.entry_count} subtitles to {report.output_path}")

    def _run_preview(self, args: argparse.Namespace, config: dict) -> None:
        if not os.path.isfile(args.media):
            raise FileNotFoundError(f"Input media file not found or is not a file: {args.media}")
        session = Session(config)
        source = session.open_source(args.media)
        player = session.player
        player.rate = args.rate

        last_shown = {"text": None}

        def on_change(snapshot: PipelineSnapshot) -> None:
            text = snapshot.translated_text if args.translate else snapshot.current_text
            if text and text != PENDING_PLACEHOLDER and text != last_shown["text"]:
                last_shown["text"] = text
                tqdm.write(f"[{player.current_time():7.1f}s] {text}")

        session.state.subscribe(on_change)
        try:
            if args.translate:
                session.translate(args.language or config.get('language', 'en'), model=args.model)
            else:
                session.transcribe(args.language, model=args.model)
            with tqdm(total=int(source.duration), unit="s", desc="Playback") as pbar:
                while not player.finished:
                    time.sleep(0.5)
                    position = int(player.current_time())
                    if position > pbar.n:
                        pbar.update(position - pbar.n)
            session.stop_preview()
            session.scheduler.wait_for_pending()
        finally:
            session.close()

    def _run_models(self, config: dict) -> None:
        resolver = ModelResolver(configured_path=config.get('model_path'), bundle_dir=config.get('bundle_dir'))
        installed = {m.name for m in installed_models(resolver.models_dir)}
        print(f"Models directory: {resolver.models_dir}")
        for model in AVAILABLE_MODELS:
            marker = "installed" if model.name in installed else "missing"
            print(f"  {model.name:<7} {model.filename:<18} {model.size_mb:>5} MB  {marker}")


def main() -> None:
    CLIHandler().run()
