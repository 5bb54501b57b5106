"""Configuration parsing modules for metax."""

from .cascade_config import CascadeConfig, CascadeConfigError

__all__ = [
    "CascadeConfig",
    "CascadeConfigError",
]
