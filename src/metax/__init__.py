"""metax - cascade build orchestrator for META compiler toolchains."""

__version__ = "0.1.0"
