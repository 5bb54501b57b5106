"""Error taxonomy for cascade builds.

Setup errors (MissingInputFile, InvalidChain) are fatal before watching
begins. Tool failures (CompileError, AssembleError, LinkError) abort only
the run they occur in. FileSystemError raised while cleaning up intermediate files is
logged and swallowed by the caller.
"""

from typing import Optional


class CascadeError(Exception):
    """Base exception for cascade build errors."""

    kind = "CascadeError"

    def __init__(
        self,
        message: str,
        stage_index: Optional[int] = None,
        diagnostic: str = ""
    ):
        super().__init__(message)
        self.stage_index = stage_index
        self.diagnostic = diagnostic


class MissingInputFile(CascadeError):
    """Raised when a listed chain path does not exist at setup."""

    kind = "MissingInputFile"


class InvalidChain(CascadeError):
    """Raised when the chain paths do not form a buildable cascade."""

    kind = "InvalidChain"


class LaunchError(CascadeError):
    """Raised when an external executable could not be started."""

    kind = "LaunchError"


class ToolFailure(CascadeError):
    """Raised when an external tool ran but exited non-zero."""

    kind = "ToolFailure"

    def __init__(
        self,
        message: str,
        stage_index: Optional[int] = None,
        diagnostic: str = "",
        exit_code: Optional[int] = None
    ):
        super().__init__(message, stage_index=stage_index, diagnostic=diagnostic)
        self.exit_code = exit_code


class ToolTimeout(ToolFailure):
    """Raised when an external tool exceeded the configured timeout."""

    kind = "ToolTimeout"


class CompileError(ToolFailure):
    """Raised when a stage compiler fails to produce assembly."""

    kind = "CompileError"


class AssembleError(ToolFailure):
    """Raised when the assembler rejects generated assembly."""

    kind = "AssembleError"


class LinkError(ToolFailure):
    """Raised when the linker fails to produce a binary."""

    kind = "LinkError"


class FileSystemError(CascadeError):
    """Raised when an artifact cannot be written, read or deleted."""

    kind = "FileSystemError"
