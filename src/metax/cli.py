"""
Command-line interface for metax.

This module provides the `metax cascade` command, which compiles a series of
files using the output of the previous file as compiler for the next, and
rebuilds the chain whenever one of the source files changes.
"""

import argparse
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from metax import __version__
from metax.cascade import (
    ArtifactManager,
    InvalidChain,
    MissingInputFile,
    PipelineRunner,
    ProcessGateway,
    StageChain,
    TriggerController,
)
from metax.cli_utils import (
    ChainPathValidator,
    ErrorFormatter,
    RunReporter,
    setup_logging,
)
from metax.config import CascadeConfig, CascadeConfigError


@dataclass
class CascadeArgs:
    """Arguments for the cascade command."""

    files: List[Path] = field(default_factory=list)
    include: Optional[str] = None
    config: Optional[Path] = None
    once: bool = False
    timeout: Optional[float] = None
    poll_interval: Optional[float] = None
    resume_from_changed: bool = False
    verbose: bool = False
    log_file: Optional[Path] = None


def load_config(args: CascadeArgs) -> CascadeConfig:
    """Load metax.ini and apply command-line overrides."""
    config = CascadeConfig.load(args.config, required=args.config is not None)
    return config.with_overrides(
        include=ChainPathValidator.resolve_include(args.include),
        timeout=args.timeout,
        poll_interval=args.poll_interval,
        resume_from_changed=True if args.resume_from_changed else None,
    )


def create_runner(chain: StageChain, config: CascadeConfig) -> PipelineRunner:
    """Wire the process gateway, artifact manager and pipeline runner."""
    gateway = ProcessGateway(timeout=config.timeout)
    artifacts = ArtifactManager(
        gateway,
        assembler=config.assembler,
        linker=config.linker,
        include_path=config.include,
    )
    return PipelineRunner(chain, artifacts, gateway, compiler_args=config.compiler_args)


def cascade_command(args: CascadeArgs) -> None:
    """Compile files in cascade mode.

    Examples:
        metax cascade seed.bin a.meta b.meta           # Watch and rebuild
        metax cascade seed.bin a.meta -i lib/          # With NASM include path
        metax cascade seed.bin a.meta b.meta --once    # Build once and exit
    """
    print("Compiling in cascade mode")

    try:
        config = load_config(args)
        chain = StageChain.from_paths(args.files)
        runner = create_runner(chain, config)
        reporter = RunReporter(verbose=args.verbose)

        if args.once:
            result = runner.execute()
            reporter(result)
            sys.exit(0 if result.success else 1)

        print("Spawning compiler toolchain...")
        controller = TriggerController(
            chain,
            runner,
            poll_interval=config.poll_interval,
            resume_from_changed=config.resume_from_changed,
            on_result=reporter,
        )
        controller.start()
        print("Listening for changes...")

        try:
            while True:
                time.sleep(1)
        finally:
            controller.stop()

    except MissingInputFile as e:
        ErrorFormatter.handle_missing_input(e)
    except CascadeConfigError as e:
        ErrorFormatter.print_error("Invalid configuration", str(e))
        sys.exit(1)
    except InvalidChain as e:
        ErrorFormatter.print_error("Invalid arguments", str(e))
        sys.exit(2)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def main() -> None:
    """metax - CLI for the META compiler writing library."""
    parser = argparse.ArgumentParser(
        prog="metax",
        description="CLI for the META Compiler writing library",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"metax {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    cascade_parser = subparsers.add_parser(
        "cascade",
        help="Compiles a series of input files using the output of the previous "
        "file as compiler for the next",
    )
    cascade_parser.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="Seed compiler binary followed by the source files to cascade",
    )
    cascade_parser.add_argument(
        "-i",
        "--include",
        default=None,
        type=str,
        help="The include file path to use for NASM",
    )
    cascade_parser.add_argument(
        "--config",
        default=None,
        type=Path,
        help="Configuration file (default: ./metax.ini if present)",
    )
    cascade_parser.add_argument(
        "--once",
        action="store_true",
        help="Run the cascade once and exit instead of watching for changes",
    )
    cascade_parser.add_argument(
        "-t",
        "--timeout",
        default=None,
        type=float,
        help="Kill a compiler, assembler or linker after this many seconds (default: no timeout)",
    )
    cascade_parser.add_argument(
        "--poll-interval",
        default=None,
        type=float,
        help="Seconds between checks for file changes (default: 0.5)",
    )
    cascade_parser.add_argument(
        "--resume-from-changed",
        action="store_true",
        help="Rebuild from the changed file instead of the start of the chain",
    )
    cascade_parser.add_argument(
        "--log-file",
        default=None,
        type=Path,
        help="Also write logs to this rotating log file",
    )
    cascade_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )

    # Parse arguments
    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    if parsed_args.command == "cascade":
        setup_logging(verbose=parsed_args.verbose, log_file=parsed_args.log_file)
        cascade_args = CascadeArgs(
            files=parsed_args.files,
            include=parsed_args.include,
            config=parsed_args.config,
            once=parsed_args.once,
            timeout=parsed_args.timeout,
            poll_interval=parsed_args.poll_interval,
            resume_from_changed=parsed_args.resume_from_changed,
            verbose=parsed_args.verbose,
            log_file=parsed_args.log_file,
        )
        cascade_command(cascade_args)


if __name__ == "__main__":
    main()
