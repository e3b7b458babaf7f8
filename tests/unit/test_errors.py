"""Tests for volo-dev error types."""

from __future__ import annotations

from pathlib import Path

from volo_dev.core.errors import (
    BindPermissionDeniedError,
    ConfigError,
    DirectoryCreationError,
    ErrorContext,
    PortExhaustionError,
    ServiceError,
    ServiceExitedError,
    ServiceReadinessTimeout,
    ServiceSpawnError,
    VoloError,
)


def test_error_context_format() -> None:
    assert ErrorContext(service="frontend").format() == "[frontend]"
    assert ErrorContext(service="frontend", port=5173).format() == "[frontend] port 5173"
    assert (
        ErrorContext(service="postgres", path=Path("/p/data/postgres")).format()
        == "[postgres] /p/data/postgres"
    )


def test_message_without_context() -> None:
    err = ConfigError("bad value")
    assert str(err) == "bad value"
    assert err.service is None


def test_port_exhaustion() -> None:
    err = PortExhaustionError("frontend", 5173, 5193)

    assert str(err) == "[frontend] port 5173 no free port in 5173-5192 (20 candidates occupied)"
    assert err.service == "frontend"
    assert err.denied == ()


def test_permission_denied_is_exhaustion() -> None:
    err = BindPermissionDeniedError("backend", 80, 85, (80, 81, 82, 83, 84))
    assert isinstance(err, PortExhaustionError)
    assert "not permitted to bind any port in 80-84" in str(err)


def test_service_errors_carry_service_name() -> None:
    for err in (
        ServiceSpawnError("backend", "cannot start 'pnpm'"),
        ServiceReadinessTimeout("frontend", "not ready after 60s", port=5173),
        ServiceExitedError("postgres", 1),
    ):
        assert isinstance(err, ServiceError)
        assert isinstance(err, VoloError)
        assert err.service is not None


def test_service_exited_message() -> None:
    before = ServiceExitedError("postgres", 1, port=5433)
    after = ServiceExitedError("backend", -15, after_ready=True)

    assert str(before) == "[postgres] port 5433 exited with code 1 before becoming ready"
    assert "after becoming ready" in str(after)
    assert after.returncode == -15


def test_directory_creation_error() -> None:
    err = DirectoryCreationError("firebaseAuth", Path("/p/data/firebase-emulator"), "Read-only")

    assert err.service == "firebaseAuth"
    assert "cannot create data directory: Read-only" in str(err)
