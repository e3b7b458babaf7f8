"""
Error types for volo-dev port resolution, isolation and service launch.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class ErrorContext:
    """
    Context information for an error, naming the service it belongs to.

    Attributes:
        service: Service the error is attributed to (e.g. "frontend")
        port: Port involved, if any
        path: Filesystem path involved, if any
    """

    service: str
    port: int | None = None
    path: Path | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "[frontend] port 5173"
        """
        parts = [f"[{self.service}]"]
        if self.port is not None:
            parts.append(f"port {self.port}")
        if self.path is not None:
            parts.append(str(self.path))
        return " ".join(parts)


class VoloError(Exception):
    """Base exception for all volo-dev errors."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    @property
    def service(self) -> str | None:
        return self.context.service if self.context else None

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            return f"{self.context.format()} {self.message}"
        return self.message


class ConfigError(VoloError):
    """
    Raised when the project configuration cannot be used.

    Examples:
    - Non-numeric port in .env
    - Workers mode without an external DATABASE_URL
    - Unknown placeholder in a command template
    """

    pass


class PortExhaustionError(VoloError):
    """
    Raised when the bounded linear search finds no free port for a service.

    The searched window is ``[start, end)``.
    """

    def __init__(
        self,
        service: str,
        start: int,
        end: int,
        denied: tuple[int, ...] = (),
        message: str | None = None,
    ):
        self.start = start
        self.end = end
        self.denied = denied
        super().__init__(
            message or f"no free port in {start}-{end - 1} ({end - start} candidates occupied)",
            ErrorContext(service=service, port=start),
        )


class BindPermissionDeniedError(PortExhaustionError):
    """
    Raised when every candidate port failed to bind for a reason other
    than being in use (privileged port, invalid port, sandbox policy).
    """

    def __init__(self, service: str, start: int, end: int, denied: tuple[int, ...] = ()):
        super().__init__(
            service,
            start,
            end,
            denied,
            message=f"not permitted to bind any port in {start}-{end - 1}",
        )


class ServiceError(VoloError):
    """Base for failures of a single launched service."""

    def __init__(self, service: str, message: str, port: int | None = None):
        super().__init__(message, ErrorContext(service=service, port=port))


class ServiceSpawnError(ServiceError):
    """
    Raised when a service process cannot be started.

    Examples:
    - Executable not found (pnpm / firebase not installed)
    - Working directory missing
    """

    pass


class ServiceReadinessTimeout(ServiceError):
    """Raised when a started service never signals readiness in time."""

    pass


class ServiceExitedError(ServiceError):
    """Raised when a service process exits unexpectedly."""

    def __init__(
        self,
        service: str,
        returncode: int | None,
        port: int | None = None,
        after_ready: bool = False,
    ):
        self.returncode = returncode
        self.after_ready = after_ready
        when = "after becoming ready" if after_ready else "before becoming ready"
        super().__init__(service, f"exited with code {returncode} {when}", port=port)


class DirectoryCreationError(VoloError):
    """Raised when an isolated data directory cannot be created."""

    def __init__(self, service: str, path: Path, reason: str):
        super().__init__(
            f"cannot create data directory: {reason}",
            ErrorContext(service=service, path=path),
        )
