"""
Environment handling for volo-dev.

A generated project carries its settings in env files written by the
generator: ``server/.dev.vars`` (shared with wrangler) and an optional
``.env`` at the project root. volo-dev reads them into a plain mapping once
at startup; the process environment is never modified.

Resolution order (first wins):
    1. The process environment
    2. <project>/.env
    3. <project>/server/.dev.vars

Usage:
    from volo_dev.core.environment import load_project_env

    env = load_project_env(Path.cwd())
    env.get("DATABASE_URL", "")
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)


class DevMode(StrEnum):
    """Development topology."""

    LOCAL = "local"  # Node backend + embedded Postgres
    WORKERS = "workers"  # wrangler dev, external database required


# Env files relative to the project root, highest precedence first
ENV_FILES = (".env", "server/.dev.vars")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def read_env_file(path: Path) -> dict[str, str]:
    """
    Parse a dotenv-style file.

    Blank lines and ``#`` comments are skipped, an optional ``export``
    prefix is accepted and matching surrounding quotes are stripped.

    Args:
        path: File to read

    Returns:
        Mapping of variable name to value
    """
    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export ") :].strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            if key:
                values[key] = value
    return values


def load_project_env(
    project_root: Path,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    Merge the project's env files under the process environment.

    Args:
        project_root: Project directory
        environ: Process environment (defaults to ``os.environ``)

    Returns:
        Merged mapping; keys from ``environ`` take precedence
    """
    merged: dict[str, str] = {}
    for relative in reversed(ENV_FILES):
        env_path = project_root / relative
        if env_path.is_file():
            logger.debug("Loading environment from %s", env_path)
            merged.update(read_env_file(env_path))
    merged.update(os.environ if environ is None else environ)
    return merged


def parse_bool(value: str | None) -> bool | None:
    """Parse a boolean env value; ``None`` for unset or empty, ``ValueError`` otherwise."""
    if value is None or not value.strip():
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def env_key(service: str) -> str:
    """
    Convert a service name to its env-var stem.

    Examples:
        >>> env_key("firebaseAuth")
        'FIREBASE_AUTH'
        >>> env_key("backend")
        'BACKEND'
    """
    chars: list[str] = []
    for i, ch in enumerate(service):
        if ch.isupper() and i > 0 and not service[i - 1].isupper():
            chars.append("_")
        chars.append("_" if ch == "-" else ch.upper())
    return "".join(chars)
