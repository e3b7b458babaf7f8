"""
Port allocation for volo dev sessions.

Every service has an intended port (8787 backend, 5173 frontend, 5433
postgres, 9099 auth emulator, 4000 emulator UI). When a second project is
already running on this machine those ports are taken, so each service falls
back to the next free port instead of failing.

Strategy:
- Probe the intended port by binding a throwaway socket
- If occupied, probe intended+1, intended+2, ... (forward only, no wrap)
- Give up after ``max_attempts`` candidates with PortExhaustionError
- Ports handed to earlier services in the same pass are skipped unprobed

Resolution runs over the configured service list in order, so an identical
environment always yields an identical plan. Nothing is persisted: the plan
lives for one dev session and is recomputed on the next start.
"""

from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, NamedTuple

from volo_dev.core.errors import BindPermissionDeniedError, PortExhaustionError

if TYPE_CHECKING:
    from .services import ServiceSpec

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_MAX_ATTEMPTS = 20
MAX_PORT = 65535

_IN_USE_ERRNOS = {
    errno.EADDRINUSE,
    getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE),
}
_NO_ADDRESS_ERRNOS = {errno.EADDRNOTAVAIL, errno.EAFNOSUPPORT}
_LOOPBACK_HOSTS = {"127.0.0.1", "::1", "localhost"}


class PortStatus(StrEnum):
    """Outcome of probing one port."""

    FREE = "free"
    IN_USE = "in_use"
    DENIED = "denied"  # bind refused for another reason (privileged, invalid, policy)


class PortOrigin(StrEnum):
    """Whether a service got the port it asked for."""

    INTENDED = "intended"
    FALLBACK = "fallback"


class PortAssignment(NamedTuple):
    """Port assigned to one service for the current session."""

    service: str
    port: int
    origin: PortOrigin
    intended_port: int

    @property
    def skipped(self) -> int:
        """Number of candidates passed over before this port."""
        return self.port - self.intended_port


Probe = Callable[[int], PortStatus]


def probe_port(port: int, host: str = DEFAULT_HOST) -> PortStatus:
    """
    Check whether a port can be bound right now.

    For a loopback host both ``127.0.0.1`` and ``::1`` are checked, since
    Node and Vite bind ``localhost`` to the IPv6 loopback. The IPv6 check is
    skipped on machines without IPv6. Test sockets are closed before
    returning on every path.

    Args:
        port: Port number to check
        host: Host to bind on

    Returns:
        PortStatus.FREE if every bind succeeded, IN_USE if the address is
        taken on any loopback, DENIED for any other bind failure
    """
    status = _bind_status(host, port)
    if status != PortStatus.FREE or host not in _LOOPBACK_HOSTS:
        return status
    for other in ("127.0.0.1", "::1"):
        if other == host:
            continue
        other_status = _bind_status(other, port, optional=other == "::1")
        if other_status != PortStatus.FREE:
            return other_status
    return PortStatus.FREE


def _bind_status(host: str, port: int, optional: bool = False) -> PortStatus:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        s = socket.socket(family, socket.SOCK_STREAM)
    except OSError:
        if optional:
            return PortStatus.FREE
        raise
    with s:
        try:
            s.bind((host, port))
        except OverflowError:
            return PortStatus.DENIED
        except OSError as e:
            if e.errno in _IN_USE_ERRNOS:
                return PortStatus.IN_USE
            if optional and e.errno in _NO_ADDRESS_ERRNOS:
                # No IPv6 loopback configured
                return PortStatus.FREE
            logger.debug("Bind to %s:%s refused: %s", host, port, e)
            return PortStatus.DENIED
    return PortStatus.FREE


def is_port_free(port: int, host: str = DEFAULT_HOST) -> bool:
    """
    Check if a port is available for binding.

    Args:
        port: Port number to check
        host: Host to check on

    Returns:
        True if port is available, False if in use or not bindable
    """
    return probe_port(port, host) == PortStatus.FREE


def resolve_port(
    service: str,
    intended_port: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    host: str = DEFAULT_HOST,
    reserved: Iterable[int] = (),
    probe: Probe | None = None,
) -> PortAssignment:
    """
    Assign a port to a service by bounded forward linear probing.

    Candidates are ``intended_port`` .. ``intended_port + max_attempts - 1``
    (clipped at 65535). Reserved candidates count against the window but are
    not probed.

    Args:
        service: Service name, used for errors and logging
        intended_port: Preferred port
        max_attempts: Size of the candidate window
        host: Host to probe on
        reserved: Ports already assigned in this resolution pass
        probe: Port probe (defaults to binding on ``host``)

    Returns:
        PortAssignment with origin INTENDED or FALLBACK

    Raises:
        PortExhaustionError: No candidate in the window is free
        BindPermissionDeniedError: Every probed candidate refused the bind
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    check = probe or partial(probe_port, host=host)
    taken = set(reserved)
    end = min(intended_port + max_attempts, MAX_PORT + 1)
    denied: list[int] = []
    probed = 0

    for candidate in range(intended_port, end):
        if candidate in taken:
            continue
        probed += 1
        status = check(candidate)
        if status == PortStatus.FREE:
            if candidate == intended_port:
                return PortAssignment(service, candidate, PortOrigin.INTENDED, intended_port)
            logger.info(
                "%s: port %d in use, falling back to %d", service, intended_port, candidate
            )
            return PortAssignment(service, candidate, PortOrigin.FALLBACK, intended_port)
        if status == PortStatus.DENIED:
            denied.append(candidate)

    if probed and len(denied) == probed:
        raise BindPermissionDeniedError(service, intended_port, end, tuple(denied))
    raise PortExhaustionError(service, intended_port, end, tuple(denied))


@dataclass(frozen=True)
class PortPlan:
    """
    The port assignments of one dev session.

    Attributes:
        assignments: One entry per placed service, in resolution order
        failures: Services whose search was exhausted
    """

    assignments: tuple[PortAssignment, ...] = ()
    failures: tuple[PortExhaustionError, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[PortAssignment]:
        return iter(self.assignments)

    def __len__(self) -> int:
        return len(self.assignments)

    def get(self, service: str) -> PortAssignment | None:
        for assignment in self.assignments:
            if assignment.service == service:
                return assignment
        return None

    def failure(self, service: str) -> PortExhaustionError | None:
        for error in self.failures:
            if error.service == service:
                return error
        return None

    @property
    def ports(self) -> dict[str, int]:
        """Service name to assigned port."""
        return {a.service: a.port for a in self.assignments}


def build_port_plan(
    services: Iterable[ServiceSpec],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    host: str = DEFAULT_HOST,
    probe: Probe | None = None,
) -> PortPlan:
    """
    Resolve ports for every service, in order.

    A service whose search is exhausted is recorded in ``failures``; the
    remaining services are still resolved.

    Args:
        services: Services in configured order
        max_attempts: Candidate window per service
        host: Host to probe on
        probe: Port probe (defaults to binding on ``host``)

    Returns:
        PortPlan for the session
    """
    assignments: list[PortAssignment] = []
    failures: list[PortExhaustionError] = []
    reserved: set[int] = set()

    for spec in services:
        try:
            assignment = resolve_port(
                spec.name,
                spec.intended_port,
                max_attempts,
                host=host,
                reserved=reserved,
                probe=probe,
            )
        except PortExhaustionError as e:
            logger.warning("%s", e)
            failures.append(e)
            continue
        reserved.add(assignment.port)
        assignments.append(assignment)

    return PortPlan(assignments=tuple(assignments), failures=tuple(failures))
