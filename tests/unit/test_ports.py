"""
Tests for port probing and resolution.

The fallback search is forward-only linear probing over
[intended, intended + max_attempts), with no wrap-around and no retry;
the resolver tests below pin that behaviour.
"""

from __future__ import annotations

import socket

import pytest

from volo_dev.core.errors import BindPermissionDeniedError, PortExhaustionError
from volo_dev.runtime.ports import (
    DEFAULT_MAX_ATTEMPTS,
    PortAssignment,
    PortOrigin,
    PortStatus,
    build_port_plan,
    is_port_free,
    probe_port,
    resolve_port,
)
from volo_dev.runtime.services import CatalogSettings, ServiceSpec, default_services

# =============================================================================
# Probing (real sockets)
# =============================================================================


class TestProbePort:
    def test_listening_port_is_in_use(self, listener: socket.socket) -> None:
        port = listener.getsockname()[1]
        assert probe_port(port) == PortStatus.IN_USE
        assert is_port_free(port) is False

    def test_unused_port_is_free(self, free_port: int) -> None:
        assert probe_port(free_port) == PortStatus.FREE
        assert is_port_free(free_port) is True

    def test_port_free_again_after_listener_closes(self) -> None:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.bind(("127.0.0.1", 0))
        s.listen()
        port = s.getsockname()[1]
        assert not is_port_free(port)
        s.close()
        assert is_port_free(port)

    def test_probe_releases_the_port(self, free_port: int) -> None:
        assert is_port_free(free_port)
        # A leaked probe socket would make the second probe fail
        assert is_port_free(free_port)

    def test_out_of_range_port_is_denied(self) -> None:
        assert probe_port(70000) == PortStatus.DENIED
        assert is_port_free(70000) is False

    def test_ipv6_loopback_listener_is_in_use(self, ipv6_listener: socket.socket) -> None:
        # Vite and Node 17+ listen on ::1 for "localhost"
        port = ipv6_listener.getsockname()[1]
        assert probe_port(port) == PortStatus.IN_USE
        assert probe_port(port, host="localhost") == PortStatus.IN_USE


class TestResolvePortRealSockets:
    def test_occupied_port_falls_back_forward(self, listener: socket.socket) -> None:
        port = listener.getsockname()[1]
        if port + 5 > 65535:
            pytest.skip("ephemeral port too close to the top of the range")

        assignment = resolve_port("frontend", port, 5)

        assert assignment.origin == PortOrigin.FALLBACK
        assert port < assignment.port < port + 5

    def test_ipv6_listener_forces_fallback(self, ipv6_listener: socket.socket) -> None:
        port = ipv6_listener.getsockname()[1]
        if port + 5 > 65535:
            pytest.skip("ephemeral port too close to the top of the range")

        assignment = resolve_port("frontend", port, 5)

        assert assignment.origin == PortOrigin.FALLBACK
        assert assignment.port != port


# =============================================================================
# Resolution (deterministic probe)
# =============================================================================


class TestResolvePort:
    def test_free_intended_port_is_used(self, fake_probe) -> None:
        probe = fake_probe()
        assignment = resolve_port("backend", 8787, probe=probe)

        assert assignment == PortAssignment("backend", 8787, PortOrigin.INTENDED, 8787)
        assert probe.calls == [8787]

    def test_occupied_intended_port_falls_back_to_next(self, fake_probe) -> None:
        assignment = resolve_port("frontend", 5173, probe=fake_probe(occupied={5173}))

        assert assignment.port == 5174
        assert assignment.origin == PortOrigin.FALLBACK
        assert assignment.skipped == 1

    def test_fallback_is_smallest_free_port_above_intended(self, fake_probe) -> None:
        probe = fake_probe(occupied={5173, 5174, 5176})
        assignment = resolve_port("frontend", 5173, probe=probe)

        assert assignment.port == 5175
        assert probe.calls == [5173, 5174, 5175]

    def test_search_never_leaves_window(self, fake_probe) -> None:
        probe = fake_probe(occupied=range(5173, 6000))

        with pytest.raises(PortExhaustionError):
            resolve_port("frontend", 5173, 20, probe=probe)

        assert probe.calls == list(range(5173, 5193))
        assert all(5173 <= p < 5173 + 20 for p in probe.calls)

    def test_exhaustion_names_service_and_range(self, fake_probe) -> None:
        probe = fake_probe(occupied=range(5173, 5183))

        with pytest.raises(PortExhaustionError) as exc_info:
            resolve_port("frontend", 5173, 10, probe=probe)

        err = exc_info.value
        assert err.service == "frontend"
        assert (err.start, err.end) == (5173, 5183)
        assert "5173-5182" in str(err)
        assert "[frontend]" in str(err)

    def test_last_candidate_in_window_is_used(self, fake_probe) -> None:
        probe = fake_probe(occupied=range(5173, 5182))
        assignment = resolve_port("frontend", 5173, 10, probe=probe)
        assert assignment.port == 5182

    def test_single_attempt_only_probes_intended(self, fake_probe) -> None:
        probe = fake_probe(occupied={9099})

        with pytest.raises(PortExhaustionError):
            resolve_port("firebaseAuth", 9099, 1, probe=probe)

        assert probe.calls == [9099]

    def test_window_clipped_at_highest_port(self, fake_probe) -> None:
        probe = fake_probe(occupied=range(65530, 65536))

        with pytest.raises(PortExhaustionError) as exc_info:
            resolve_port("backend", 65530, 20, probe=probe)

        assert max(probe.calls) == 65535
        assert exc_info.value.end == 65536

    def test_no_wrap_around(self, fake_probe) -> None:
        probe = fake_probe(occupied={65535})

        with pytest.raises(PortExhaustionError):
            resolve_port("backend", 65535, 20, probe=probe)

        assert probe.calls == [65535]

    def test_reserved_ports_skipped_without_probing(self, fake_probe) -> None:
        probe = fake_probe()
        assignment = resolve_port("frontend", 5173, probe=probe, reserved={5173, 5174})

        assert assignment.port == 5175
        assert assignment.origin == PortOrigin.FALLBACK
        assert probe.calls == [5175]

    def test_all_denied_is_permission_error(self, fake_probe) -> None:
        probe = fake_probe(denied=range(80, 85))

        with pytest.raises(BindPermissionDeniedError) as exc_info:
            resolve_port("backend", 80, 5, probe=probe)

        assert isinstance(exc_info.value, PortExhaustionError)
        assert exc_info.value.denied == (80, 81, 82, 83, 84)
        assert "not permitted" in str(exc_info.value)

    def test_mixed_denied_and_in_use_is_plain_exhaustion(self, fake_probe) -> None:
        probe = fake_probe(occupied={80, 81}, denied={82, 83, 84})

        with pytest.raises(PortExhaustionError) as exc_info:
            resolve_port("backend", 80, 5, probe=probe)

        assert not isinstance(exc_info.value, BindPermissionDeniedError)

    def test_invalid_max_attempts(self, fake_probe) -> None:
        with pytest.raises(ValueError):
            resolve_port("backend", 8787, 0, probe=fake_probe())

    def test_default_window(self) -> None:
        assert DEFAULT_MAX_ATTEMPTS == 20


# =============================================================================
# Plans
# =============================================================================


def _catalog() -> tuple[ServiceSpec, ...]:
    return default_services(CatalogSettings())


class TestBuildPortPlan:
    def test_documented_frontend_conflict(self, fake_probe) -> None:
        """Another project holds 5173: only the frontend moves."""
        plan = build_port_plan(_catalog(), probe=fake_probe(occupied={5173}))

        assert plan.ports == {
            "backend": 8787,
            "frontend": 5174,
            "postgres": 5433,
            "firebaseAuth": 9099,
            "firebaseUI": 4000,
        }
        assert plan.get("frontend").origin == PortOrigin.FALLBACK
        for name in ("backend", "postgres", "firebaseAuth", "firebaseUI"):
            assert plan.get(name).origin == PortOrigin.INTENDED
        assert plan.failures == ()

    def test_resolution_follows_configured_order(self, fake_probe) -> None:
        plan = build_port_plan(_catalog(), probe=fake_probe())
        assert [a.service for a in plan] == [
            "backend",
            "frontend",
            "postgres",
            "firebaseAuth",
            "firebaseUI",
        ]

    def test_identical_environment_yields_identical_plan(self, fake_probe) -> None:
        first = build_port_plan(_catalog(), probe=fake_probe(occupied={5173, 9099}))
        second = build_port_plan(_catalog(), probe=fake_probe(occupied={5173, 9099}))
        assert first.assignments == second.assignments

    def test_no_two_services_share_a_port(self, fake_probe) -> None:
        services = [
            ServiceSpec(name="a", intended_port=3000),
            ServiceSpec(name="b", intended_port=3000),
            ServiceSpec(name="c", intended_port=3001),
        ]
        probe = fake_probe()
        plan = build_port_plan(services, probe=probe)

        assert plan.ports == {"a": 3000, "b": 3001, "c": 3002}
        # 3000 and 3001 were handed out in this pass and never re-probed
        assert probe.calls == [3000, 3001, 3002]

    def test_exhaustion_does_not_stop_other_services(self, fake_probe) -> None:
        plan = build_port_plan(_catalog(), 5, probe=fake_probe(occupied=range(5173, 5178)))

        assert plan.get("frontend") is None
        failure = plan.failure("frontend")
        assert failure is not None
        assert (failure.start, failure.end) == (5173, 5178)
        assert len(plan) == 4
        assert plan.get("firebaseUI").port == 4000

    def test_lookup_of_unknown_service(self, fake_probe) -> None:
        plan = build_port_plan(_catalog(), probe=fake_probe())
        assert plan.get("worker") is None
        assert plan.failure("worker") is None
