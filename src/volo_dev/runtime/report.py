"""
Human-readable summaries of a dev session.

All functions here are pure: they format what they are given and never probe
ports or touch processes.
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.table import Table

from .isolation import InstancePaths
from .launcher import ServiceProcess, ServiceState
from .ports import DEFAULT_HOST, PortAssignment, PortOrigin, PortPlan

_NAME_WIDTH = 14
_WILDCARD_HOSTS = {"0.0.0.0", "::", ""}


def describe_origin(assignment: PortAssignment) -> str:
    """``intended`` or ``fallback (<n> occupied)``."""
    if assignment.origin == PortOrigin.INTENDED:
        return "intended"
    return f"fallback ({assignment.skipped} occupied)"


def render_plan(plan: PortPlan) -> str:
    """
    Format a port plan, one service per line.

    Example:
        Port assignments:
          backend        8787   intended
          frontend       5174   fallback (1 occupied)
          firebaseUI     -      unavailable (4000-4019 occupied)
    """
    lines = ["Port assignments:"]
    for assignment in plan:
        lines.append(
            f"  {assignment.service:<{_NAME_WIDTH}} {assignment.port:<6} "
            f"{describe_origin(assignment)}"
        )
    for failure in plan.failures:
        lines.append(
            f"  {failure.service or '?':<{_NAME_WIDTH}} {'-':<6} "
            f"unavailable ({failure.start}-{failure.end - 1} occupied)"
        )
    return "\n".join(lines)


def render_paths(paths: InstancePaths) -> str:
    """Format the project's isolated data layout."""
    return "\n".join(
        [
            f"Project: {paths.project_root}",
            f"  data      {paths.data_dir}",
            f"  postgres  {paths.postgres_dir}",
            f"  firebase  {paths.firebase_dir}",
            f"  logs      {paths.logs_dir}",
        ]
    )


def service_url(host: str, port: int) -> str:
    """Browser URL for a service bound on ``host``."""
    if host in _WILDCARD_HOSTS:
        host = "localhost"
    elif ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}"


def render_status(
    processes: Iterable[ServiceProcess],
    plan: PortPlan | None = None,
    host: str = DEFAULT_HOST,
) -> str:
    """
    Format the final state of each service.

    Ready HTTP services are shown with their URL on ``host``.

    Failures of optional services are listed as warnings; failures of
    required services as errors.
    """
    lines = ["Services:"]
    problems: list[str] = []
    for proc in processes:
        state = proc.state.value.replace("_", " ")
        ready_http = proc.state == ServiceState.READY and proc.spec.http
        url = service_url(host, proc.port) if ready_http else ""
        lines.append(f"  {proc.name:<{_NAME_WIDTH}} {proc.port:<6} {state:<12} {url}".rstrip())
        if proc.error is not None:
            level = "ERROR" if proc.spec.required else "WARNING"
            problems.append(f"  {level}: {proc.error}")
    if plan is not None:
        for failure in plan.failures:
            problems.append(f"  {failure}")
    if problems:
        lines.append("")
        lines.append("Problems:")
        lines.extend(problems)
    return "\n".join(lines)


def plan_table(plan: PortPlan, title: str = "Port plan") -> Table:
    """Rich table of a port plan for terminal output."""
    table = Table(title=title)
    table.add_column("Service", style="cyan")
    table.add_column("Port", justify="right")
    table.add_column("Origin")
    for assignment in plan:
        style = "green" if assignment.origin == PortOrigin.INTENDED else "yellow"
        table.add_row(
            assignment.service,
            str(assignment.port),
            f"[{style}]{describe_origin(assignment)}[/{style}]",
        )
    for failure in plan.failures:
        table.add_row(
            failure.service or "?",
            "-",
            f"[red]unavailable ({failure.start}-{failure.end - 1} occupied)[/red]",
        )
    return table
