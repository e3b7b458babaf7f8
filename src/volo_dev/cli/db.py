"""
Database connection command.

Shows how the project's DATABASE_URL is classified, which topology it
implies and which connection string schema migrations should use.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from volo_dev.core.database_url import (
    DatabaseKind,
    classify_database_url,
    connection_guidance,
    migration_url,
)
from volo_dev.core.environment import load_project_env

console = Console()


def db_command(
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
    error: str | None = typer.Option(
        None,
        "--error",
        "-e",
        help="Connection error message to get troubleshooting tips for",
    ),
) -> None:
    """
    Classify the configured DATABASE_URL.

    Passwords are masked in all output.

    Examples:
        volo-dev db
        volo-dev db --error "getaddrinfo ENOTFOUND db.abc.supabase.co"
    """
    root = Path(os.path.abspath(project))
    if not root.is_dir():
        console.print(f"[red]Error: project directory not found: {escape(str(root))}[/red]")
        raise typer.Exit(1)

    url = load_project_env(root).get("DATABASE_URL", "").strip()
    if not url:
        console.print("DATABASE_URL is not set: [green]embedded Postgres[/green] (local mode only)")
        return

    target = classify_database_url(url)
    migrate = classify_database_url(migration_url(target))

    topology = "local mode only" if target.is_local else "local or workers mode"
    console.print(
        f"Provider:   [cyan]{target.provider}[/cyan] ({target.kind.value})", soft_wrap=True
    )
    console.print(f"URL:        {escape(target.masked())}", soft_wrap=True, highlight=False)
    console.print(f"Migrations: {escape(migrate.masked())}", soft_wrap=True, highlight=False)
    console.print(f"Topology:   {topology}", soft_wrap=True)

    if target.kind == DatabaseKind.SUPABASE_DIRECT:
        console.print(
            "[yellow]Direct Supabase connections are IPv6-only; "
            "migrations use the transaction pooler instead.[/yellow]"
        )

    if error:
        console.print()
        console.print(connection_guidance(target, error), markup=False, highlight=False)
