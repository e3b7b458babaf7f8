"""
Per-project data directories.

Stateful services keep their data under the project that started them:

    <project>/data/postgres            embedded Postgres cluster
    <project>/data/firebase-emulator   auth emulator import/export
    <project>/data/logs                session logs
    <project>/data/firebase.json       generated emulator config

Two projects in different directories therefore never share a database
cluster or emulator state, even when they run at the same time. The
directories survive the session; the next start reuses them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from volo_dev.core.errors import DirectoryCreationError

from .services import FIREBASE_AUTH, POSTGRES

logger = logging.getLogger(__name__)

DATA_DIR_NAME = "data"


class InstancePaths(BaseModel):
    """Filesystem layout of one project's local state."""

    project_root: Path
    data_dir: Path
    postgres_dir: Path
    firebase_dir: Path
    logs_dir: Path
    firebase_config: Path

    model_config = ConfigDict(frozen=True)

    def for_service(self, service: str) -> Path | None:
        """Data directory owned by a stateful service, if it has one."""
        if service == POSTGRES:
            return self.postgres_dir
        if service == FIREBASE_AUTH:
            return self.firebase_dir
        return None


def resolve_instance_paths(project_root: Path | str) -> InstancePaths:
    """
    Derive the data layout for a project directory.

    Pure path construction: the root is made absolute and normalized
    without touching the filesystem (symlinks are not followed).

    Args:
        project_root: Project directory (relative paths resolve against cwd)

    Returns:
        InstancePaths rooted at ``<project_root>/data``
    """
    root = Path(os.path.abspath(project_root))
    data_dir = root / DATA_DIR_NAME
    return InstancePaths(
        project_root=root,
        data_dir=data_dir,
        postgres_dir=data_dir / "postgres",
        firebase_dir=data_dir / "firebase-emulator",
        logs_dir=data_dir / "logs",
        firebase_config=data_dir / "firebase.json",
    )


def ensure_directories(paths: InstancePaths, services: Iterable[str] | None = None) -> None:
    """
    Create the data tree if absent.

    Existing directories are left as they are. Any other filesystem failure
    is raised, attributed to the service that owns the directory.

    Args:
        paths: Project layout
        services: Stateful services whose directories are needed
            (``None`` creates all of them)

    Raises:
        DirectoryCreationError: A directory could not be created
    """
    wanted = [("volo", paths.data_dir), ("volo", paths.logs_dir)]
    names = [POSTGRES, FIREBASE_AUTH] if services is None else list(services)
    for name in names:
        service_dir = paths.for_service(name)
        if service_dir is not None:
            wanted.append((name, service_dir))

    for owner, directory in wanted:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryCreationError(owner, directory, e.strerror or str(e)) from e
        logger.debug("Data directory ready: %s", directory)
