"""
Dev session commands: start and plan.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from volo_dev.core.config import DevConfig, load_dev_config
from volo_dev.core.environment import DevMode
from volo_dev.core.errors import ConfigError
from volo_dev.core.logging import parse_level, setup_logging
from volo_dev.runtime.report import plan_table, render_paths
from volo_dev.runtime.session import EXIT_INTERRUPTED, DevSession

console = Console()


def load_config_or_exit(
    project: Path,
    mode: DevMode | None = None,
    max_attempts: int | None = None,
) -> DevConfig:
    """Load the project configuration, printing the error and exiting on failure."""
    try:
        return load_dev_config(project, mode, max_attempts=max_attempts)
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def start_command(
    mode: DevMode | None = typer.Option(
        None,
        "--mode",
        "-m",
        case_sensitive=False,
        help="local (Node backend + embedded Postgres) or workers (wrangler dev)",
    ),
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
    max_attempts: int | None = typer.Option(
        None,
        "--max-attempts",
        min=1,
        help="Ports to try per service before giving up (default: 20)",
    ),
    check: bool = typer.Option(
        False,
        "--check",
        help="Start everything, wait until ready, then stop again",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """
    Start the project's dev services.

    Ports already used by another project are skipped; each service gets the
    next free port and the others are told about it.

    Examples:
        volo-dev start                  # Local mode in the current directory
        volo-dev start --mode workers   # wrangler dev against an external DB
        volo-dev start --check          # Smoke test: start, verify, stop
    """
    config = load_config_or_exit(project, mode, max_attempts)
    level = logging.DEBUG if verbose else parse_level(config.log_level)

    session = DevSession(config)
    try:
        log_file = setup_logging(session.paths.logs_dir, level)
    except OSError as e:
        console.print(
            f"[red]Error: cannot write logs to {session.paths.logs_dir}: {escape(str(e))}[/red]"
        )
        raise typer.Exit(1)
    logging.getLogger(__name__).debug("Logging to %s", log_file)

    try:
        code = asyncio.run(session.run(check=check))
    except KeyboardInterrupt:
        code = EXIT_INTERRUPTED
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    raise typer.Exit(code)


def plan_command(
    mode: DevMode | None = typer.Option(
        None,
        "--mode",
        "-m",
        case_sensitive=False,
        help="local or workers",
    ),
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
    max_attempts: int | None = typer.Option(
        None,
        "--max-attempts",
        min=1,
        help="Ports to try per service before giving up (default: 20)",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """
    Show which ports a start would use right now, without starting anything.

    Exits with status 1 when a required service has no free port.
    """
    config = load_config_or_exit(project, mode, max_attempts)
    setup_logging(level=logging.DEBUG if verbose else logging.ERROR)

    session = DevSession(config)
    plan = session.resolve()

    console.print(plan_table(plan, title=f"Port plan ({config.mode.value} mode)"))
    console.print(render_paths(session.paths), markup=False, highlight=False)

    blocking = session.blocking_failures()
    for failure in blocking:
        console.print(f"[red]Error: {escape(str(failure))}[/red]")
    if blocking:
        raise typer.Exit(1)
