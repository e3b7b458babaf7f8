"""
volo-dev CLI.

Commands:

- start: run the project's dev services on collision-free ports
- plan:  show the port plan and data layout without starting anything
- db:    classify DATABASE_URL and show the migration connection string
"""

from __future__ import annotations

import platform

import typer

from volo_dev._version import get_version
from volo_dev.cli.db import db_command
from volo_dev.cli.dev import plan_command, start_command


def version_callback(value: bool) -> None:
    """Display version and environment information."""
    if value:
        typer.echo(f"volo-dev {get_version()}")
        typer.echo(f"Python {platform.python_version()} ({platform.python_implementation()})")
        raise typer.Exit()


# =============================================================================
# Main Application
# =============================================================================

app = typer.Typer(
    help="""volo-dev – run a volo project locally

Several projects can run side by side: each service falls back to the next
free port when its usual one is taken, and every project keeps its database
and emulator data under its own data/ directory.
""",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and environment information",
    ),
) -> None:
    """volo-dev main callback for global options."""
    pass


app.command(name="start")(start_command)
app.command(name="plan")(plan_command)
app.command(name="db")(db_command)


def main() -> None:
    app(standalone_mode=True)


__all__ = ["app", "main", "version_callback"]
