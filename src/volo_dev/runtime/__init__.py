"""
volo-dev runtime.

Port allocation, per-project data isolation and service process management
for a local dev session. ``volo_dev.runtime.session`` ties them together;
it is not imported here because it depends on ``volo_dev.core.config``.
"""

from .isolation import InstancePaths, ensure_directories, resolve_instance_paths
from .launcher import ServiceLauncher, ServiceProcess, ServiceState, startup_tiers
from .ports import (
    PortAssignment,
    PortOrigin,
    PortPlan,
    PortStatus,
    build_port_plan,
    is_port_free,
    probe_port,
    resolve_port,
)
from .report import render_paths, render_plan, render_status
from .services import ServiceSpec, default_services

__all__ = [
    # Ports
    "PortAssignment",
    "PortOrigin",
    "PortPlan",
    "PortStatus",
    "build_port_plan",
    "is_port_free",
    "probe_port",
    "resolve_port",
    # Isolation
    "InstancePaths",
    "ensure_directories",
    "resolve_instance_paths",
    # Launcher
    "ServiceLauncher",
    "ServiceProcess",
    "ServiceState",
    "startup_tiers",
    # Reporting
    "render_paths",
    "render_plan",
    "render_status",
    # Catalog
    "ServiceSpec",
    "default_services",
]
