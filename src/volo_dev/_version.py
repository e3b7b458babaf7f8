"""Version lookup for volo-dev.

A source checkout reads ``pyproject.toml`` so the version is right without
reinstalling; an installed copy uses the distribution metadata.
"""

import tomllib
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _metadata_version
from pathlib import Path

DISTRIBUTION = "volo-dev"
_PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def _checkout_version(pyproject: Path) -> str | None:
    try:
        project = tomllib.loads(pyproject.read_text()).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return None
    if project.get("name") != DISTRIBUTION:
        return None
    return project.get("version")


def get_version() -> str:
    """Version of the running volo-dev, ``0.0.0`` when it cannot be determined."""
    checkout = _checkout_version(_PYPROJECT)
    if checkout:
        return checkout
    try:
        return _metadata_version(DISTRIBUTION)
    except PackageNotFoundError:
        return "0.0.0"
