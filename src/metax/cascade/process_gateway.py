"""
Process gateway for external cascade tools.

This module is the only place in metax that launches child processes. Every
compiler, assembler and linker invocation goes through ProcessGateway.run,
which blocks until the child exits and hands back both output streams.

Design:
    - Wraps subprocess.Popen + communicate so stdout and stderr are drained
      together (no deadlock on full pipe buffers)
    - Reports "could not start" as LaunchError, separate from a non-zero exit
    - Optional timeout; on expiry the whole child process tree is killed
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

import psutil

from .errors import LaunchError, ToolFailure, ToolTimeout

# Seconds to wait for terminated children before force killing them
TERMINATE_GRACE_PERIOD = 3


@dataclass
class ProcessResult:
    """Result of one external tool invocation."""

    stdout: str
    stderr: str
    exit_code: int
    command: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when the tool exited with status 0."""
        return self.exit_code == 0


class ProcessGateway:
    """
    Launches external executables and collects their output.

    Example usage:
        gateway = ProcessGateway()
        result = gateway.run("nasm", ["-v"])
        if result.success:
            print(result.stdout)
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize process gateway.

        Args:
            timeout: Seconds to wait for a tool before killing it. None waits
                indefinitely.
        """
        self.timeout = timeout

    def run(
        self,
        executable: Union[str, Path],
        arguments: Sequence[str] = ()
    ) -> ProcessResult:
        """
        Run an executable and wait for it to exit.

        Args:
            executable: Path or PATH-resolvable name of the executable
            arguments: Arguments passed after the executable

        Returns:
            ProcessResult with decoded stdout, stderr and the exit code

        Raises:
            LaunchError: If the executable cannot be located or started
            ToolTimeout: If a timeout is configured and the tool exceeds it
        """
        cmd = [str(executable)] + [str(arg) for arg in arguments]
        logging.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as e:
            raise LaunchError(
                f"Executable not found: {executable}",
                diagnostic=str(e),
            ) from e
        except PermissionError as e:
            raise LaunchError(
                f"Executable is not runnable: {executable}",
                diagnostic=str(e),
            ) from e
        except OSError as e:
            raise LaunchError(
                f"Failed to start {executable}: {e}",
                diagnostic=str(e),
            ) from e

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill_process_tree(proc)
            stdout, stderr = proc.communicate()
            raise ToolTimeout(
                f"{Path(str(executable)).name} timed out after {self.timeout}s",
                diagnostic=stderr or "",
                exit_code=proc.returncode,
            )
        except KeyboardInterrupt:
            self._kill_process_tree(proc)
            raise

        logging.debug(f"{Path(str(executable)).name} exited with {proc.returncode}")
        return ProcessResult(
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=proc.returncode,
            command=cmd,
        )

    @staticmethod
    def check(
        result: ProcessResult,
        error_class: type = ToolFailure,
        message: str = "",
        stage_index: Optional[int] = None
    ) -> ProcessResult:
        """
        Raise error_class if the result carries a non-zero exit code.

        Args:
            result: Result returned by run()
            error_class: ToolFailure subclass to raise
            message: Error message (defaults to the command line)
            stage_index: Chain index the tool ran for

        Returns:
            The same result, when it succeeded
        """
        if result.success:
            return result

        if not message:
            message = f"{' '.join(result.command)} exited with {result.exit_code}"
        raise error_class(
            message,
            stage_index=stage_index,
            diagnostic=result.stderr,
            exit_code=result.exit_code,
        )

    def _kill_process_tree(self, proc: subprocess.Popen) -> int:
        """Kill a child process and everything it spawned.

        Args:
            proc: The child process started by run()

        Returns:
            Number of processes signalled
        """
        try:
            root = psutil.Process(proc.pid)
            processes = root.children(recursive=True) + [root]
        except psutil.NoSuchProcess:
            return 0

        killed_count = 0
        for p in reversed(processes):
            try:
                p.terminate()
                killed_count += 1
            except psutil.NoSuchProcess:
                pass

        _gone, alive = psutil.wait_procs(processes, timeout=TERMINATE_GRACE_PERIOD)
        for p in alive:
            try:
                p.kill()
                logging.warning(f"Force killed stubborn process {p.pid}")
            except psutil.NoSuchProcess:
                pass

        return killed_count
