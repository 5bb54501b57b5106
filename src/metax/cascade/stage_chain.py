"""
Stage chain model for cascade builds.

A chain is built from an ordered list of paths. Index 0 is the seed compiler
binary, every later index is a cascade source. Each stage holds a compiler
slot: for the seed it is the seed binary itself, for a source it is the
binary linked from that source once a run has built it. Stage i is always
compiled with the slot of stage i-1.
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .errors import InvalidChain, MissingInputFile


@dataclass(frozen=True)
class Stage:
    """One link of the cascade chain."""

    index: int
    source_path: Path
    compiler_path: Optional[Path] = None

    @property
    def is_seed(self) -> bool:
        return self.index == 0


class StageChain:
    """
    Ordered, owned sequence of cascade stages.

    advance_compiler() is the only mutator and is called by the pipeline
    runner after a stage has been built. Runs operate on snapshot() copies.

    Example usage:
        chain = StageChain.from_paths(["seed.bin", "a.meta", "b.meta"])
        stages = chain.snapshot()
        chain.advance_compiler(1, Path("a.meta.bin"))
    """

    def __init__(self, stages: Sequence[Stage]):
        if len(stages) < 2:
            raise InvalidChain(
                "A cascade chain needs a seed compiler and at least one source file"
            )
        for expected, stage in enumerate(stages):
            if stage.index != expected:
                raise InvalidChain(
                    f"Stage at position {expected} has index {stage.index}"
                )
        self._stages: List[Stage] = list(stages)
        self._lock = threading.Lock()

    @classmethod
    def from_paths(
        cls,
        paths: Sequence[Union[str, Path]],
        base_dir: Optional[Path] = None
    ) -> "StageChain":
        """
        Build a chain from the command-line path list.

        Args:
            paths: Seed compiler followed by cascade sources
            base_dir: Directory relative paths are resolved against
                (defaults to the current working directory)

        Returns:
            New StageChain

        Raises:
            MissingInputFile: If any listed path does not exist
            InvalidChain: If fewer than two paths are given
        """
        base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

        resolved = []
        for raw in paths:
            path = Path(raw)
            if not path.is_absolute():
                path = base_dir / path
            if not path.exists():
                raise MissingInputFile(f"File {path} does not exist")
            resolved.append(path)

        if len(resolved) < 2:
            raise InvalidChain(
                "A cascade chain needs a seed compiler and at least one source file"
            )

        stages = [Stage(index=0, source_path=resolved[0], compiler_path=resolved[0])]
        for index, path in enumerate(resolved[1:], start=1):
            stages.append(Stage(index=index, source_path=path))
        return cls(stages)

    def __len__(self) -> int:
        return len(self._stages)

    @property
    def seed(self) -> Stage:
        with self._lock:
            return self._stages[0]

    def snapshot(self) -> Tuple[Stage, ...]:
        """Return an immutable ordered copy of the stages."""
        with self._lock:
            return tuple(self._stages)

    def compiler_for(self, index: int) -> Optional[Path]:
        """Return the compiler stage `index` is built with."""
        if index < 1 or index >= len(self._stages):
            raise IndexError(f"No buildable stage at index {index}")
        with self._lock:
            return self._stages[index - 1].compiler_path

    def advance_compiler(self, index: int, new_compiler_path: Path) -> None:
        """
        Record the binary produced by stage `index`.

        Args:
            index: Stage that was just built (1 <= index < len)
            new_compiler_path: Linked binary, the compiler for stage index + 1

        Raises:
            IndexError: For the seed stage or an index outside the chain
        """
        if index == 0:
            raise IndexError("The seed compiler is never rebuilt")
        if index < 0 or index >= len(self._stages):
            raise IndexError(f"No stage at index {index}")

        with self._lock:
            stage = self._stages[index]
            self._stages[index] = Stage(
                index=stage.index,
                source_path=stage.source_path,
                compiler_path=Path(new_compiler_path),
            )

    def watched_stages(self) -> List[Stage]:
        """Stages whose source files trigger cascade runs (index >= 1)."""
        with self._lock:
            return self._stages[1:]

    def index_of(self, path: Union[str, Path]) -> Optional[int]:
        """Return the stage index of a source path, or None."""
        path = Path(path)
        with self._lock:
            for stage in self._stages:
                if stage.source_path == path:
                    return stage.index
        return None
