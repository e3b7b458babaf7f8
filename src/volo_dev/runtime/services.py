"""
Service catalog for a volo dev session.

A service is an opaque process with a launch contract: an argv template, an
env template, the services it depends on and how it signals readiness. The
launcher never knows what pnpm, wrangler or the Firebase CLI are; it only
renders templates and watches ports.

Template placeholders (``str.format`` syntax):

    {port}            the service's resolved port
    {host}            bind host (127.0.0.1 by default)
    {data_dir}        the service's isolated data directory (stateful only)
    {project_root}    absolute project directory
    {ports[<name>]}   resolved port of any service in the plan
    {database_url}    DATABASE_URL handed to the backend
    {project_id}      Firebase project id
    {emulator_config} generated Firebase emulator config file
"""

from __future__ import annotations

import json
import shlex
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from volo_dev.core.environment import DevMode, env_key
from volo_dev.core.errors import ConfigError, ErrorContext

if TYPE_CHECKING:
    from .ports import PortPlan

BACKEND = "backend"
FRONTEND = "frontend"
POSTGRES = "postgres"
FIREBASE_AUTH = "firebaseAuth"
FIREBASE_UI = "firebaseUI"

# Documented intended ports
DEFAULT_PORTS: dict[str, int] = {
    BACKEND: 8787,
    FRONTEND: 5173,
    POSTGRES: 5433,
    FIREBASE_AUTH: 9099,
    FIREBASE_UI: 4000,
}

# Configured order; also the port resolution order
SERVICE_ORDER = (BACKEND, FRONTEND, POSTGRES, FIREBASE_AUTH, FIREBASE_UI)


class ServiceSpec(BaseModel):
    """
    A service taking part in a dev session.

    Attributes:
        name: Identifier, e.g. "backend"
        intended_port: Preferred port; fallback starts from here
        required: Session is unhealthy unless this service reaches Ready
        command: argv template; empty when hosted by another service
        hosted_by: Service whose process serves this port
        cwd: Working directory relative to the project root
        http: Serves pages or an API; the session summary links to it
        env: Environment templates added to the child environment
        depends_on: Services that must be Ready before this one starts
        stateful: Receives an isolated data directory
        ready_marker: Output substring signalling readiness; TCP connect when unset
    """

    name: str
    intended_port: int = Field(ge=1, le=65535)
    required: bool = True
    command: tuple[str, ...] = ()
    hosted_by: str | None = None
    cwd: str | None = None
    http: bool = False
    env: dict[str, str] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    stateful: bool = False
    ready_marker: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_hosted(self) -> bool:
        return not self.command


class CatalogSettings(BaseModel):
    """Inputs that decide which services a session needs and how they run."""

    mode: DevMode = DevMode.LOCAL
    ports: dict[str, int] = Field(default_factory=dict)
    commands: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    embedded_database: bool = True
    auth_emulator: bool = True

    model_config = ConfigDict(frozen=True)


def default_command(service: str, mode: DevMode) -> tuple[str, ...]:
    """Stock launch command for a service."""
    if service == BACKEND and mode == DevMode.WORKERS:
        return (
            "pnpm", "exec", "wrangler", "dev",
            "--port", "{port}", "--ip", "{host}",
        )  # fmt: skip
    if service == BACKEND:
        return ("pnpm", "run", "dev", "--", "--port", "{port}")
    if service == FRONTEND:
        return (
            "pnpm", "run", "dev", "--",
            "--port", "{port}", "--host", "{host}", "--strictPort",
        )  # fmt: skip
    if service == POSTGRES:
        return (
            "node", "server/scripts/embedded-postgres.js",
            "--port", "{port}", "--data-dir", "{data_dir}",
        )  # fmt: skip
    if service == FIREBASE_AUTH:
        return (
            "firebase", "emulators:start", "--only", "auth",
            "--project", "{project_id}", "--config", "{emulator_config}",
            "--import", "{data_dir}", "--export-on-exit", "{data_dir}",
        )  # fmt: skip
    return ()


def parse_command(value: str) -> tuple[str, ...]:
    """Split a ``VOLO_<SERVICE>_COMMAND`` override shell-style."""
    try:
        return tuple(shlex.split(value))
    except ValueError as e:
        raise ConfigError(f"cannot parse command {value!r}: {e}") from e


def command_override_key(service: str) -> str:
    return f"VOLO_{env_key(service)}_COMMAND"


def port_key(service: str) -> str:
    return f"{env_key(service)}_PORT"


def default_services(settings: CatalogSettings) -> tuple[ServiceSpec, ...]:
    """
    Build the service list for a session, in resolution order.

    Args:
        settings: Detected topology and overrides

    Returns:
        ServiceSpecs ordered backend, frontend, postgres, firebaseAuth, firebaseUI
        (services not needed by the topology are omitted)
    """
    use_postgres = settings.mode == DevMode.LOCAL and settings.embedded_database
    use_emulator = settings.auth_emulator

    def port(name: str) -> int:
        return settings.ports.get(name, DEFAULT_PORTS[name])

    def command(name: str) -> tuple[str, ...]:
        return settings.commands.get(name) or default_command(name, settings.mode)

    def workdir(name: str, default: str) -> str | None:
        # Overrides run from the project root
        return None if settings.commands.get(name) else default

    backend_env = {
        "PORT": "{port}",
        "DATABASE_URL": "{database_url}",
        "FIREBASE_PROJECT_ID": "{project_id}",
    }
    backend_deps: list[str] = []
    frontend_env = {
        "VITE_API_URL": "http://localhost:{ports[backend]}",
        "VITE_FIREBASE_PROJECT_ID": "{project_id}",
    }
    if use_postgres:
        backend_deps.append(POSTGRES)
    if use_emulator:
        backend_deps.append(FIREBASE_AUTH)
        backend_env["FIREBASE_AUTH_EMULATOR_HOST"] = "{host}:{ports[firebaseAuth]}"
        frontend_env["VITE_FIREBASE_AUTH_EMULATOR_HOST"] = "{host}:{ports[firebaseAuth]}"

    services = [
        ServiceSpec(
            name=BACKEND,
            intended_port=port(BACKEND),
            command=command(BACKEND),
            cwd=workdir(BACKEND, "server"),
            http=True,
            env=backend_env,
            depends_on=tuple(backend_deps),
        ),
        ServiceSpec(
            name=FRONTEND,
            intended_port=port(FRONTEND),
            command=command(FRONTEND),
            cwd=workdir(FRONTEND, "ui"),
            http=True,
            env=frontend_env,
            depends_on=(BACKEND,),
        ),
    ]
    if use_postgres:
        services.append(
            ServiceSpec(
                name=POSTGRES,
                intended_port=port(POSTGRES),
                command=command(POSTGRES),
                env={"PGPORT": "{port}", "PGDATA": "{data_dir}"},
                stateful=True,
            )
        )
    if use_emulator:
        services.append(
            ServiceSpec(
                name=FIREBASE_AUTH,
                intended_port=port(FIREBASE_AUTH),
                command=command(FIREBASE_AUTH),
                stateful=True,
            )
        )
        services.append(
            ServiceSpec(
                name=FIREBASE_UI,
                intended_port=port(FIREBASE_UI),
                required=False,
                hosted_by=FIREBASE_AUTH,
                http=True,
                depends_on=(FIREBASE_AUTH,),
            )
        )
    return tuple(services)


def render_template(template: str, variables: Mapping[str, object], service: str) -> str:
    """Fill one template, attributing bad placeholders to the service."""
    try:
        return template.format_map(variables)
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigError(f"cannot render {template!r}: {e}", ErrorContext(service=service)) from e


def emulator_config(plan: PortPlan, host: str) -> dict[str, object]:
    """Firebase emulator config with the resolved auth and UI ports."""
    auth = plan.get(FIREBASE_AUTH)
    ui = plan.get(FIREBASE_UI)
    emulators: dict[str, object] = {"singleProjectMode": True}
    if auth is not None:
        emulators["auth"] = {"host": host, "port": auth.port}
    if ui is not None:
        emulators["ui"] = {"enabled": True, "host": host, "port": ui.port}
    else:
        emulators["ui"] = {"enabled": False}
    return {"emulators": emulators}


def write_emulator_config(path: Path, plan: PortPlan, host: str) -> Path:
    """Write the Firebase emulator config consumed via ``--config``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(emulator_config(plan, host), indent=2) + "\n")
    return path
