"""
Cascade build components for metax.

This module provides the cascade build implementation including:
- Process gateway (external compiler, assembler and linker invocations)
- Artifact management (.asm, .o, .bin files per source)
- Stage chain model (seed compiler followed by cascade sources)
- Pipeline runner (left-to-right cascade runs)
- Trigger controller (file watching, one run at a time)
"""

from .artifacts import Artifact, ArtifactKind, ArtifactManager
from .errors import (
    AssembleError,
    CascadeError,
    CompileError,
    FileSystemError,
    InvalidChain,
    LaunchError,
    LinkError,
    MissingInputFile,
    ToolFailure,
    ToolTimeout,
)
from .file_watcher import FileWatcher, WatchRegistration
from .pipeline_runner import (
    PipelineRun,
    PipelineRunner,
    RunResult,
    RunStatus,
    StageOutcome,
)
from .process_gateway import ProcessGateway, ProcessResult
from .stage_chain import Stage, StageChain
from .trigger_controller import ControllerState, TriggerController

__all__ = [
    "Artifact",
    "ArtifactKind",
    "ArtifactManager",
    "AssembleError",
    "CascadeError",
    "CompileError",
    "ControllerState",
    "FileSystemError",
    "FileWatcher",
    "InvalidChain",
    "LaunchError",
    "LinkError",
    "MissingInputFile",
    "PipelineRun",
    "PipelineRunner",
    "ProcessGateway",
    "ProcessResult",
    "RunResult",
    "RunStatus",
    "Stage",
    "StageChain",
    "StageOutcome",
    "ToolFailure",
    "ToolTimeout",
    "TriggerController",
    "WatchRegistration",
]
