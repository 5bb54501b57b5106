"""
Pipeline runner for cascade builds.

Walks a chain snapshot left to right. For every stage it:
1. Runs the previous stage's compiler on the stage source (assembly on stdout)
2. Persists the assembly as <source>.asm
3. Assembles it into <source>.o
4. Links <source>.bin
5. Deletes the object file
6. Installs <source>.bin as the compiler for the next stage

The first failure ends the run. Later stages are never attempted and
artifacts from earlier stages are left in place.
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .artifacts import ArtifactKind, ArtifactManager
from .errors import CascadeError, CompileError, LaunchError
from .process_gateway import ProcessGateway
from .stage_chain import Stage, StageChain

_run_ids = itertools.count(1)


class RunStatus(Enum):
    """Lifecycle of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """A single cascade run over a chain snapshot."""

    chain_snapshot: Tuple[Stage, ...]
    start_index: int = 1
    status: RunStatus = RunStatus.PENDING
    failure_stage: Optional[int] = None
    trigger: Optional[Path] = None
    run_id: int = field(default_factory=lambda: next(_run_ids))
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


@dataclass
class StageOutcome:
    """Artifacts produced by one successfully built stage."""

    index: int
    source_path: Path
    assembly_path: Path
    binary_path: Path
    build_time: float


@dataclass
class RunResult:
    """Result of a complete cascade run."""

    status: RunStatus
    failure_stage: Optional[int] = None
    error_kind: Optional[str] = None
    diagnostic: str = ""
    message: str = ""
    stages: List[StageOutcome] = field(default_factory=list)
    build_time: float = 0.0
    run_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED


class PipelineRunner:
    """
    Executes cascade runs.

    Example usage:
        gateway = ProcessGateway()
        runner = PipelineRunner(chain, ArtifactManager(gateway), gateway)
        result = runner.execute()
        if not result.success:
            print(f"Stage {result.failure_stage}: {result.diagnostic}")
    """

    def __init__(
        self,
        chain: StageChain,
        artifacts: ArtifactManager,
        gateway: ProcessGateway,
        compiler_args: Sequence[str] = ()
    ):
        """
        Initialize pipeline runner.

        Args:
            chain: Live chain updated after every built stage
            artifacts: Artifact manager for .asm/.o/.bin files
            gateway: Process gateway used to run stage compilers
            compiler_args: Extra arguments placed before the source path
        """
        self.chain = chain
        self.artifacts = artifacts
        self.gateway = gateway
        self.compiler_args = list(compiler_args)

    def resume_index_for(self, changed_path: Optional[Path]) -> int:
        """Stage index a run triggered by `changed_path` may resume from."""
        if changed_path is None:
            return 1
        index = self.chain.index_of(changed_path)
        if index is None or index < 1:
            return 1
        return index

    def execute(
        self,
        chain_snapshot: Optional[Sequence[Stage]] = None,
        start_index: int = 1,
        trigger: Optional[Path] = None
    ) -> RunResult:
        """
        Run the cascade over a chain snapshot.

        Args:
            chain_snapshot: Stages to build (defaults to a fresh snapshot)
            start_index: First stage to build; 1 rebuilds every source. A
                later index whose predecessor has no binary yet falls back to 1
            trigger: Changed file that caused this run, for reporting

        Returns:
            RunResult; tool failures are reported here, never raised

        Raises:
            ValueError: If start_index is outside the chain
        """
        if chain_snapshot is None:
            chain_snapshot = self.chain.snapshot()
        stages = tuple(chain_snapshot)

        if start_index < 1 or start_index >= len(stages):
            raise ValueError(
                f"start_index must be between 1 and {len(stages) - 1}, got {start_index}"
            )

        run = PipelineRun(
            chain_snapshot=stages,
            start_index=start_index,
            trigger=trigger,
        )
        return self._execute_run(run)

    def _execute_run(self, run: PipelineRun) -> RunResult:
        stages = run.chain_snapshot
        run.status = RunStatus.RUNNING
        run.started_at = time.time()
        outcomes: List[StageOutcome] = []
        run.start_index, compiler = self._resume_point(stages, run.start_index)

        logging.info(
            f"Cascade run #{run.run_id} started "
            f"(stages {run.start_index}..{len(stages) - 1})"
        )

        current_index = run.start_index

        try:
            for stage in stages[run.start_index:]:
                current_index = stage.index
                outcome = self._build_stage(stage, compiler)
                outcomes.append(outcome)

                self.chain.advance_compiler(stage.index, outcome.binary_path)
                compiler = outcome.binary_path

        except CascadeError as e:
            run.status = RunStatus.FAILED
            run.failure_stage = e.stage_index if e.stage_index is not None else current_index
            run.finished_at = time.time()
            logging.error(
                f"Cascade run #{run.run_id} failed at stage {run.failure_stage} "
                f"({e.kind}): {e}"
            )
            return RunResult(
                status=run.status,
                failure_stage=run.failure_stage,
                error_kind=e.kind,
                diagnostic=e.diagnostic,
                message=str(e),
                stages=outcomes,
                build_time=run.finished_at - run.started_at,
                run_id=run.run_id,
            )

        run.status = RunStatus.SUCCEEDED
        run.finished_at = time.time()
        logging.info(
            f"Cascade run #{run.run_id} succeeded: built {len(outcomes)} stage(s) "
            f"in {run.finished_at - run.started_at:.2f}s"
        )
        return RunResult(
            status=run.status,
            message=f"Built {len(outcomes)} stage(s)",
            stages=outcomes,
            build_time=run.finished_at - run.started_at,
            run_id=run.run_id,
        )

    def _build_stage(self, stage: Stage, compiler: Optional[Path]) -> StageOutcome:
        """Build one stage with `compiler`. Raises CascadeError on failure."""
        start_time = time.time()
        source = stage.source_path

        # Compile source -> assembly text
        assembly_text = self._compile(stage, compiler)
        assembly_path = self.artifacts.write_assembly(source, assembly_text)

        # Assemble and link
        object_path = self.artifacts.assemble(
            source, assembly_path, stage_index=stage.index
        )
        try:
            binary_path = self.artifacts.link(
                source, object_path, stage_index=stage.index
            )
        finally:
            self.artifacts.cleanup_object(object_path)

        elapsed = time.time() - start_time
        logging.info(f"[{stage.index}] {source.name} -> {binary_path.name} ({elapsed:.2f}s)")
        return StageOutcome(
            index=stage.index,
            source_path=source,
            assembly_path=assembly_path,
            binary_path=binary_path,
            build_time=elapsed,
        )

    def _compile(self, stage: Stage, compiler: Optional[Path]) -> str:
        if compiler is None or not Path(compiler).exists():
            raise CompileError(
                f"No compiler available for {stage.source_path.name}: "
                f"stage {stage.index - 1} has not been built",
                stage_index=stage.index,
            )

        logging.debug(f"[{stage.index}] Compiling {stage.source_path.name} with {Path(compiler).name}")
        try:
            result = self.gateway.run(
                compiler, self.compiler_args + [str(stage.source_path)]
            )
        except LaunchError as e:
            raise CompileError(
                f"Failed to launch compiler {compiler}: {e}",
                stage_index=stage.index,
                diagnostic=e.diagnostic,
            ) from e

        self.gateway.check(
            result,
            CompileError,
            f"Compiling {stage.source_path.name} failed (exit {result.exit_code})",
            stage_index=stage.index,
        )
        return result.stdout

    def _resume_point(
        self,
        stages: Tuple[Stage, ...],
        start_index: int
    ) -> Tuple[int, Optional[Path]]:
        """
        Find where a run starts and which compiler it starts with.

        A chain created at startup only knows the seed. When resuming past
        stage 1, the predecessor's binary left on disk by an earlier session
        is adopted. Without one the run falls back to a full rebuild.

        Returns:
            (start index, compiler for that stage)
        """
        previous = stages[start_index - 1]
        compiler = previous.compiler_path
        if start_index == 1 or (compiler is not None and Path(compiler).exists()):
            return start_index, compiler

        binary = self.artifacts.artifact(previous.source_path, ArtifactKind.BINARY)
        if binary.exists():
            logging.info(f"Resuming at stage {start_index} with existing {binary.path.name}")
            self.chain.advance_compiler(previous.index, binary.path)
            return start_index, binary.path

        logging.info(
            f"{binary.path.name} has not been built, rebuilding from stage 1"
        )
        return 1, stages[0].compiler_path
