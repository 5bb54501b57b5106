"""CLI utility functions for metax.

This module provides common utilities used by the cascade command including:
- Logging setup (console and rotating log file)
- Include path resolution
- Error handling and formatting
- Run result reporting
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from metax.cascade import MissingInputFile, RunResult

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Setup logging for the cascade watcher.

    Args:
        verbose: Log DEBUG messages (tool command lines) to the console
        log_file: Optional path for a rotating log file
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)


class ChainPathValidator:
    """Resolves paths given to the cascade command."""

    @staticmethod
    def resolve_include(
        include: Optional[Union[str, Path]], base_dir: Optional[Path] = None
    ) -> Optional[Path]:
        """Resolve the assembler include path against base_dir.

        An empty include means the -i flag is left out.
        """
        if include is None or str(include).strip() == "":
            return None
        path = Path(include)
        if path.is_absolute():
            return path
        return (base_dir or Path.cwd()) / path


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Stage 2 failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        """Print formatted success message."""
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        """Print formatted warning message."""
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_missing_input(error: MissingInputFile) -> None:
        """Handle a missing chain file at setup."""
        ErrorFormatter.print_error("Error: File not found", str(error))
        print("Every path passed to 'metax cascade' must exist before watching starts.")
        sys.exit(1)

    @staticmethod
    def handle_permission_error(error: PermissionError) -> None:
        """Handle PermissionError with standard formatting."""
        ErrorFormatter.print_error("Error: Permission denied", str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Cascade interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class RunReporter:
    """Prints cascade run results for the operator."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def __call__(self, result: RunResult) -> None:
        self.report(result)

    def report(self, result: RunResult) -> None:
        if result.success:
            ErrorFormatter.print_success(
                f"Cascade succeeded ({len(result.stages)} stage(s), {result.build_time:.2f}s)"
            )
            if self.verbose:
                for outcome in result.stages:
                    print(f"  [{outcome.index}] {outcome.source_path.name} -> {outcome.binary_path}")
            return

        message = result.message
        if result.diagnostic:
            message += f"\n\n{result.diagnostic.rstrip()}"
        ErrorFormatter.print_error(
            f"Cascade failed at stage {result.failure_stage} ({result.error_kind})",
            message,
        )
