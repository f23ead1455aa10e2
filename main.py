"""
Main entry point for the TreeDup command line tool.

This module handles:
- Command line argument parsing
- Logging configuration
- Settings loading and command line overrides
- Running the duplication on a worker thread
- Exception and signal handling
"""

from __future__ import annotations

import argparse
import faulthandler
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List

from PyQt6.QtCore import QCoreApplication

from treedup.core.models import CollisionAction, DuplicateOptions, DuplicateResult
from treedup.services.settings import ApplicationSettings, SettingsManager
from treedup.workers import DuplicateWorker, WorkerState, WorkerThread


# =============================================================================
# Constants
# =============================================================================

APP_NAME = "treedup"
APP_VERSION = "1.0.0"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

COLLISION_CHOICES = {
    'overwrite': CollisionAction.OVERWRITE_EXISTING_FILES,
    'keep': CollisionAction.KEEP_EXISTING_FILES,
    'rename-any': CollisionAction.RENAME_ANY_EXISTING_FILES,
    'rename-different': CollisionAction.RENAME_DIFFERENT_EXISTING_FILES,
}

# Worker poll interval while waiting on the main thread, in milliseconds
WAIT_INTERVAL_MS = 200


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class CommandLineArgs:
    """Parsed command line arguments."""
    source: str = ""
    destination: str = ""
    collision_action: Optional[CollisionAction] = None
    skip_zero_byte: bool = False
    skip_system: bool = False
    structure_only: bool = False
    no_merge: bool = False
    convert_tiff: bool = False
    compare_images: bool = False
    verify: bool = False
    config_file: Optional[str] = None
    log_level: Optional[str] = None
    log_file: Optional[str] = None


# =============================================================================
# Logging Setup
# =============================================================================

class LogFormatter(logging.Formatter):
    """Custom log formatter with colors for console."""

    COLORS = {
        logging.INFO: '\033[32m',      # Green
        logging.WARNING: '\033[33m',   # Yellow
        logging.ERROR: '\033[31m',     # Red
        logging.CRITICAL: '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelno, '')
            return f"{color}{formatted}{self.RESET}"

        return formatted


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure application logging.

    Args:
        level: Log level string
        log_file: Optional file path for logging

    Returns:
        Root logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(LogFormatter(use_colors=True))
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_file,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(LogFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger('PIL').setLevel(logging.WARNING)

    return root_logger


# =============================================================================
# Exception Handling
# =============================================================================

class ExceptionHandler:
    """
    Global exception handler for unhandled exceptions.

    Logs the exception before the interpreter exits.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def handle_exception(
        self,
        exc_type: type,
        exc_value: BaseException,
        exc_tb
    ) -> None:
        """Handle an unhandled exception."""
        # Don't handle keyboard interrupt
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return

        self.logger.critical(
            "Unhandled exception",
            exc_info=(exc_type, exc_value, exc_tb)
        )


# =============================================================================
# Command Line Parsing
# =============================================================================

def parse_arguments(args: Optional[List[str]] = None) -> CommandLineArgs:
    """
    Parse command line arguments.

    Args:
        args: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Duplicate a directory tree without redundant copies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s photos backup                      Copy photos into backup
  %(prog)s --collision keep src dst           Never touch existing files
  %(prog)s --skip-system --verify src dst     Skip hidden files, verify copies
        """
    )

    parser.add_argument('source', help='Directory to duplicate')
    parser.add_argument('destination', help='Directory to duplicate into')

    # Collision handling
    parser.add_argument(
        '--collision',
        choices=list(COLLISION_CHOICES),
        default=None,
        help='What to do when a destination file already exists'
    )

    # Duplication options
    parser.add_argument(
        '--skip-zero-byte',
        action='store_true',
        help='Do not copy empty files'
    )
    parser.add_argument(
        '--skip-system',
        action='store_true',
        help='Skip hidden and system files and directories'
    )
    parser.add_argument(
        '--structure-only',
        action='store_true',
        help='Only recreate the directory structure'
    )
    parser.add_argument(
        '--no-merge',
        action='store_true',
        help='Fail if the destination already exists'
    )
    parser.add_argument(
        '--tiff',
        action='store_true',
        help='Convert images to TIFF while copying'
    )
    parser.add_argument(
        '--compare-images',
        action='store_true',
        help='Treat images with the same pixels (in any rotation) as identical'
    )
    parser.add_argument(
        '--verify',
        action='store_true',
        help='Hash every copy and compare it to the source'
    )

    # Configuration
    parser.add_argument(
        '-c', '--config',
        help='Configuration file path'
    )

    # Logging
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Log level'
    )
    parser.add_argument(
        '--log-file',
        help='Also write the log to this file'
    )

    # Version
    parser.add_argument(
        '--version',
        action='version',
        version=f'{APP_NAME} {APP_VERSION}'
    )

    parsed = parser.parse_args(args)

    result = CommandLineArgs()
    result.source = parsed.source
    result.destination = parsed.destination
    if parsed.collision:
        result.collision_action = COLLISION_CHOICES[parsed.collision]
    result.skip_zero_byte = parsed.skip_zero_byte
    result.skip_system = parsed.skip_system
    result.structure_only = parsed.structure_only
    result.no_merge = parsed.no_merge
    result.convert_tiff = parsed.tiff
    result.compare_images = parsed.compare_images
    result.verify = parsed.verify
    result.config_file = parsed.config
    result.log_level = parsed.log_level
    result.log_file = parsed.log_file

    return result


def build_options(args: CommandLineArgs, settings: ApplicationSettings) -> DuplicateOptions:
    """Combine the configured duplicate options with command line flags."""
    options = settings.duplication.duplicate_options

    if args.skip_zero_byte:
        options |= DuplicateOptions.SKIP_ZERO_BYTE_FILES
    if args.skip_system:
        options |= DuplicateOptions.SKIP_SYSTEM_FILES
    if args.structure_only:
        options |= DuplicateOptions.DIRECTORY_STRUCTURE_ONLY
    if args.convert_tiff:
        options |= DuplicateOptions.CONVERT_IMAGES_TO_TIFF
    if args.compare_images:
        options |= DuplicateOptions.COMPARE_IMAGE_CONTENT
    if args.verify:
        options |= DuplicateOptions.VERIFY_COPIES
    if args.no_merge:
        options &= ~DuplicateOptions.MERGE_EXISTING_DIRECTORIES

    return options


# =============================================================================
# Signal Handlers
# =============================================================================

def setup_signal_handlers(thread: WorkerThread) -> dict:
    """
    Stop the running duplication gracefully on SIGINT/SIGTERM.

    Returns:
        The previous handlers, for restore_signal_handlers
    """
    previous = {signal.SIGINT: signal.getsignal(signal.SIGINT)}

    def _signal_handler(signum, frame) -> None:
        logging.info(f"Received signal {signum}, stopping...")
        thread.cancel()

    signal.signal(signal.SIGINT, _signal_handler)
    if sys.platform != 'win32':
        previous[signal.SIGTERM] = signal.getsignal(signal.SIGTERM)
        signal.signal(signal.SIGTERM, _signal_handler)

    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


# =============================================================================
# Duplication
# =============================================================================

def run_duplication(
    args: CommandLineArgs,
    settings: ApplicationSettings
) -> Optional[DuplicateResult]:
    """
    Run the duplication on a worker thread and wait for it.

    Returns:
        The DuplicateResult, or None if the worker failed
    """
    worker = DuplicateWorker(
        args.source,
        args.destination,
        build_options(args, settings),
        args.collision_action or settings.duplication.collision_action,
        settings=settings.duplication,
        search_settings=settings.search,
    )
    thread = WorkerThread(worker)
    previous_handlers = setup_signal_handlers(thread)

    try:
        thread.start()
        # Short waits keep the main thread responsive to signals
        while not thread.wait(WAIT_INTERVAL_MS):
            pass
    finally:
        restore_signal_handlers(previous_handlers)

    if worker.state == WorkerState.FAILED:
        error_type, message = worker.error
        logging.error(f"Duplication failed: {error_type}: {message}")
        return None

    return worker.result


def report(result: DuplicateResult) -> None:
    """Log a summary of a duplication."""
    logging.info(
        f"Directories: {result.directories_created} created, {result.directories_merged} merged"
    )
    logging.info(
        f"Files: {result.files_copied} copied, {result.files_overwritten} overwritten, "
        f"{result.files_renamed} renamed, {result.files_skipped} skipped "
        f"({result.bytes_copied} bytes in {result.duration:.2f}s)"
    )
    for path, message in result.errors:
        logging.warning(f"Failed: {path}: {message}")


# =============================================================================
# Main Function
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Command line entry point.

    Returns:
        Exit code (0 for success, 1 for failure; argument errors exit with 2)
    """
    # Redirect stdout/stderr if None (common in frozen apps)
    if sys.stdout is None:
        sys.stdout = open(os.devnull, 'w')
    if sys.stderr is None:
        sys.stderr = open(os.devnull, 'w')

    faulthandler.enable()

    args = parse_arguments(argv)

    app = QCoreApplication.instance() or QCoreApplication([APP_NAME])
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)

    settings_manager = SettingsManager(Path(args.config_file) if args.config_file else None)
    settings = settings_manager.settings

    level = args.log_level or settings.logging.level
    log_file = args.log_file or settings.logging.log_file
    logger = setup_logging(level, Path(log_file) if log_file else None)
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    exception_handler = ExceptionHandler(logger)
    sys.excepthook = exception_handler.handle_exception

    result = run_duplication(args, settings)
    if result is None:
        return EXIT_FAILURE

    report(result)

    settings_manager.add_recent_path(os.path.abspath(args.source), is_source=True)
    settings_manager.add_recent_path(os.path.abspath(args.destination), is_source=False)

    if not result.success:
        logger.error(f"Duplication of {args.source} did not complete")
        return EXIT_FAILURE

    logger.info("Duplication complete")
    return EXIT_SUCCESS


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == '__main__':
    sys.exit(main())
