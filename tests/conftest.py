"""Shared pytest fixtures for volo-dev tests."""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import pytest

from volo_dev.core.logging import ROOT_LOGGER
from volo_dev.runtime.ports import PortStatus


class FakeProbe:
    """Deterministic port probe that records every port it was asked about."""

    def __init__(self, occupied: Iterable[int] = (), denied: Iterable[int] = ()) -> None:
        self.occupied = set(occupied)
        self.denied = set(denied)
        self.calls: list[int] = []

    def __call__(self, port: int) -> PortStatus:
        self.calls.append(port)
        if port in self.denied:
            return PortStatus.DENIED
        if port in self.occupied:
            return PortStatus.IN_USE
        return PortStatus.FREE


def find_free_port() -> int:
    """Ask the OS for a currently unused loopback port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def fake_probe() -> Callable[..., FakeProbe]:
    """Factory for FakeProbe instances."""
    return FakeProbe


@pytest.fixture
def free_port() -> int:
    return find_free_port()


@pytest.fixture
def listener() -> Iterator[socket.socket]:
    """A loopback socket listening on an OS-assigned port."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    s.listen()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def ipv6_listener() -> Iterator[socket.socket]:
    """A socket listening on the IPv6 loopback, as Vite does for localhost."""
    if not socket.has_ipv6:
        pytest.skip("IPv6 not supported")
    try:
        s = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
    except OSError:
        pytest.skip("IPv6 not supported")
    try:
        s.bind(("::1", 0))
    except OSError:
        s.close()
        pytest.skip("IPv6 loopback not configured")
    s.listen()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """An empty generated-project directory."""
    root = tmp_path / "project"
    (root / "server").mkdir(parents=True)
    return root


@pytest.fixture(autouse=True)
def _reset_volo_logging() -> Iterator[None]:
    """Undo setup_logging so handlers never outlive the test that made them."""
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
