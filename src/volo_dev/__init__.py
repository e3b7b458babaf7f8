"""
volo-dev - local development orchestrator for volo apps.

Resolves collision-free ports for the backend, frontend, embedded Postgres
and Firebase emulators, isolates per-project data directories, and runs the
services together so several projects can be developed side by side.
"""

from __future__ import annotations

from ._version import get_version
from .core.errors import (
    ConfigError,
    DirectoryCreationError,
    PortExhaustionError,
    ServiceError,
    VoloError,
)

__version__ = get_version()

__all__ = [
    "__version__",
    "VoloError",
    "ConfigError",
    "PortExhaustionError",
    "ServiceError",
    "DirectoryCreationError",
]
