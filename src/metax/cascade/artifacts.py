"""
Intermediate artifact management for cascade builds.

Every cascade source file owns up to three artifacts, named by appending a
fixed suffix to the source path:

    a.meta.asm   assembly emitted by the stage compiler (kept)
    a.meta.o     object file from the assembler (deleted after linking)
    a.meta.bin   linked binary, the compiler for the next stage (kept)

Artifacts are overwritten in place, never versioned.
"""

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from .errors import AssembleError, FileSystemError, LinkError
from .process_gateway import ProcessGateway

DEFAULT_ASSEMBLER = "nasm"
DEFAULT_LINKER = "ld"


class ArtifactKind(Enum):
    """Kinds of intermediate artifacts, valued by their file suffix."""

    ASSEMBLY = ".asm"
    OBJECT = ".o"
    BINARY = ".bin"

    @property
    def suffix(self) -> str:
        return self.value


@dataclass(frozen=True)
class Artifact:
    """An artifact file derived from a cascade source."""

    source_path: Path
    kind: ArtifactKind
    path: Path

    def exists(self) -> bool:
        return self.path.exists()


class ArtifactManager:
    """
    Owns the artifact files of cascade sources.

    Assembling and linking go through the ProcessGateway with fixed argument
    templates for 32-bit ELF output.

    Example usage:
        manager = ArtifactManager(ProcessGateway(), include_path=Path("lib"))
        asm = manager.write_assembly(source, text)
        obj = manager.assemble(source, asm)
        binary = manager.link(source, obj)
        manager.cleanup_object(obj)
    """

    def __init__(
        self,
        gateway: ProcessGateway,
        assembler: str = DEFAULT_ASSEMBLER,
        linker: str = DEFAULT_LINKER,
        include_path: Optional[Path] = None
    ):
        """
        Initialize artifact manager.

        Args:
            gateway: Process gateway used to run the assembler and linker
            assembler: Assembler executable (nasm compatible)
            linker: Linker executable (GNU ld compatible)
            include_path: Default include path passed to the assembler
        """
        self.gateway = gateway
        self.assembler = assembler
        self.linker = linker
        self.include_path = include_path

    @staticmethod
    def artifact_path(source_path: Path, kind: ArtifactKind) -> Path:
        """Return the artifact path for a source, e.g. a.meta -> a.meta.asm."""
        source_path = Path(source_path)
        return source_path.with_name(source_path.name + kind.suffix)

    def artifact(self, source_path: Path, kind: ArtifactKind) -> Artifact:
        return Artifact(
            source_path=Path(source_path),
            kind=kind,
            path=self.artifact_path(source_path, kind),
        )

    def write_assembly(self, source_path: Path, text: str) -> Path:
        """
        Persist compiler output as the source's assembly artifact.

        Args:
            source_path: Cascade source the assembly was compiled from
            text: Assembly text captured from the compiler's stdout

        Returns:
            Path to the written .asm file

        Raises:
            FileSystemError: If the file cannot be written
        """
        assembly_path = self.artifact_path(source_path, ArtifactKind.ASSEMBLY)
        try:
            with open(assembly_path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise FileSystemError(
                f"Failed to write {assembly_path}: {e}", diagnostic=str(e)
            ) from e

        logging.debug(f"Wrote {len(text)} characters to {assembly_path}")
        return assembly_path

    def read_assembly(self, source_path: Path) -> str:
        """Read back the assembly artifact of a source."""
        assembly_path = self.artifact_path(source_path, ArtifactKind.ASSEMBLY)
        try:
            with open(assembly_path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise FileSystemError(
                f"Failed to read {assembly_path}: {e}", diagnostic=str(e)
            ) from e

    def build_assemble_command(
        self,
        assembly_path: Path,
        object_path: Path,
        include_path: Optional[Union[str, Path]] = None
    ) -> List[str]:
        """Build the assembler argument list (without the executable)."""
        args = ["-F", "dwarf", "-g", "-f", "elf32"]
        if include_path:
            args.extend(["-i", str(include_path)])
        args.extend(["-o", str(object_path), str(assembly_path)])
        return args

    def build_link_command(self, object_path: Path, binary_path: Path) -> List[str]:
        """Build the linker argument list (without the executable)."""
        return ["-m", "elf_i386", "-o", str(binary_path), str(object_path)]

    def assemble(
        self,
        source_path: Path,
        assembly_path: Path,
        include_path: Optional[Union[str, Path]] = None,
        stage_index: Optional[int] = None
    ) -> Path:
        """
        Assemble a source's .asm artifact into its .o artifact.

        Args:
            source_path: Cascade source the assembly belongs to
            assembly_path: Assembly file to assemble
            include_path: Include path for the assembler; falls back to the
                manager default, and the -i flag is omitted when empty
            stage_index: Chain index, attached to raised errors

        Returns:
            Path to the object file

        Raises:
            AssembleError: If the assembler exits non-zero
            LaunchError: If the assembler cannot be started
        """
        if include_path is None:
            include_path = self.include_path

        object_path = self.artifact_path(source_path, ArtifactKind.OBJECT)
        args = self.build_assemble_command(assembly_path, object_path, include_path)
        result = self.gateway.run(self.assembler, args)

        self.gateway.check(
            result,
            AssembleError,
            f"Assembling {Path(assembly_path).name} failed (exit {result.exit_code})",
            stage_index=stage_index,
        )
        return object_path

    def link(
        self,
        source_path: Path,
        object_path: Path,
        stage_index: Optional[int] = None
    ) -> Path:
        """
        Link a source's .o artifact into its .bin artifact.

        Args:
            source_path: Cascade source the object belongs to
            object_path: Object file to link
            stage_index: Chain index, attached to raised errors

        Returns:
            Path to the linked binary

        Raises:
            LinkError: If the linker exits non-zero
            LaunchError: If the linker cannot be started
        """
        binary_path = self.artifact_path(source_path, ArtifactKind.BINARY)
        args = self.build_link_command(object_path, binary_path)
        result = self.gateway.run(self.linker, args)

        self.gateway.check(
            result,
            LinkError,
            f"Linking {Path(object_path).name} failed (exit {result.exit_code})",
            stage_index=stage_index,
        )

        # The binary compiles the next stage, so it has to be runnable
        self._ensure_executable(binary_path)
        return binary_path

    def cleanup_object(self, object_path: Path) -> bool:
        """
        Delete an object artifact, best effort.

        Args:
            object_path: Object file to delete

        Returns:
            True if the file is gone afterwards
        """
        try:
            Path(object_path).unlink(missing_ok=True)
            return True
        except OSError as e:
            logging.warning(f"Failed to remove intermediate object {object_path}: {e}")
            return False

    def _ensure_executable(self, binary_path: Path) -> None:
        try:
            mode = os.stat(binary_path).st_mode
            os.chmod(binary_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            logging.warning(f"Could not mark {binary_path} executable: {e}")
