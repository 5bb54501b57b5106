"""
metax.ini configuration parser.

This module reads the optional [cascade] section of a metax.ini file. Every
key has a default, so a missing file is the same as an empty one.

Example metax.ini:
    [cascade]
    assembler = nasm
    linker = ld
    include = lib/
    poll_interval = 0.5
    timeout = 120
    compiler_args = --emit asm
    resume_from_changed = false
"""

import configparser
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

DEFAULT_CONFIG_NAME = "metax.ini"
SECTION = "cascade"


class CascadeConfigError(Exception):
    """Exception raised for metax.ini configuration errors."""

    pass


@dataclass
class CascadeConfig:
    """Settings for cascade builds."""

    assembler: str = "nasm"
    linker: str = "ld"
    include: Optional[Path] = None
    poll_interval: float = 0.5
    timeout: Optional[float] = None
    compiler_args: List[str] = field(default_factory=list)
    resume_from_changed: bool = False
    source: Optional[Path] = None

    @classmethod
    def load(cls, ini_path: Optional[Path] = None, required: bool = False) -> "CascadeConfig":
        """
        Load configuration, falling back to defaults.

        Args:
            ini_path: Config file (defaults to ./metax.ini)
            required: Raise if the file does not exist

        Returns:
            CascadeConfig with file values applied

        Raises:
            CascadeConfigError: If the file is required but missing, cannot
                be parsed, or holds invalid values
        """
        if ini_path is None:
            ini_path = Path.cwd() / DEFAULT_CONFIG_NAME

        if not ini_path.exists():
            if required:
                raise CascadeConfigError(f"Configuration file not found: {ini_path}")
            return cls()

        return cls.from_ini(ini_path)

    @classmethod
    def from_ini(cls, ini_path: Path) -> "CascadeConfig":
        """Parse the [cascade] section of an INI file."""
        parser = configparser.ConfigParser(
            interpolation=configparser.ExtendedInterpolation()
        )
        try:
            parser.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise CascadeConfigError(f"Failed to parse {ini_path}: {e}") from e

        config = cls(source=ini_path)
        if SECTION not in parser:
            return config

        section = parser[SECTION]
        allowed = {f.name for f in dataclasses.fields(cls)} - {"source"}
        unknown = set(section.keys()) - allowed
        if unknown:
            raise CascadeConfigError(
                f"Unknown keys in [{SECTION}] of {ini_path}: {', '.join(sorted(unknown))}"
            )

        try:
            if "assembler" in section:
                config.assembler = section["assembler"].strip()
            if "linker" in section:
                config.linker = section["linker"].strip()
            if section.get("include", "").strip():
                include = Path(section["include"].strip())
                if not include.is_absolute():
                    include = ini_path.parent / include
                config.include = include
            if "poll_interval" in section:
                config.poll_interval = section.getfloat("poll_interval")
            if section.get("timeout", "").strip():
                config.timeout = section.getfloat("timeout")
            if "compiler_args" in section:
                config.compiler_args = section["compiler_args"].split()
            if "resume_from_changed" in section:
                config.resume_from_changed = section.getboolean("resume_from_changed")
        except (ValueError, configparser.Error) as e:
            raise CascadeConfigError(f"Invalid value in [{SECTION}] of {ini_path}: {e}") from e

        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges."""
        if self.poll_interval <= 0:
            raise CascadeConfigError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise CascadeConfigError(f"timeout must be positive, got {self.timeout}")
        if not self.assembler:
            raise CascadeConfigError("assembler must not be empty")
        if not self.linker:
            raise CascadeConfigError("linker must not be empty")

    def with_overrides(self, **overrides: Any) -> "CascadeConfig":
        """Return a copy with every non-None override applied (CLI flags)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        config = dataclasses.replace(self, **values)
        config.validate()
        return config
