"""
Service launcher.

Starts the services of a dev session with their resolved ports injected,
waits for each to become ready and tears them down again.

Startup happens in tiers derived from ``depends_on``: backing services
(embedded Postgres, auth emulator) first, then the API backend, then the
frontend. Services within a tier are spawned in configured order and their
readiness is awaited concurrently, each with its own timeout.

Lifecycle of a ServiceProcess:

    NOT_STARTED -> STARTING -> READY -> STOPPED
                       |          |
                       +-> FAILED <+

A required service reaching FAILED stops the launch: nothing further is
started and everything already running is stopped in reverse startup order.
Optional services that fail are only reported.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from volo_dev.core.errors import (
    ConfigError,
    ServiceExitedError,
    ServiceReadinessTimeout,
    ServiceSpawnError,
    VoloError,
)
from volo_dev.core.logging import get_service_logger, log_with_context

from .isolation import InstancePaths
from .ports import DEFAULT_HOST, PortAssignment, PortPlan
from .services import ServiceSpec, render_template

logger = logging.getLogger(__name__)

DEFAULT_READY_TIMEOUT = 60.0
DEFAULT_STOP_TIMEOUT = 5.0
POLL_INTERVAL = 0.2
OUTPUT_CHUNK_SIZE = 64 * 1024
MAX_LINE_BYTES = 1024 * 1024


class ServiceState(StrEnum):
    """Lifecycle state of a launched service."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class ServiceProcess:
    """A service of the current session and its OS process, if any."""

    spec: ServiceSpec
    assignment: PortAssignment
    data_dir: Path | None = None
    state: ServiceState = ServiceState.NOT_STARTED
    process: asyncio.subprocess.Process | None = None
    error: VoloError | None = None
    started_at: float | None = None
    ready_at: float | None = None
    _marker_seen: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _output_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def port(self) -> int:
        return self.assignment.port

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def exited(self) -> bool:
        return self.process is not None and self.process.returncode is not None

    @property
    def startup_seconds(self) -> float | None:
        if self.started_at is None or self.ready_at is None:
            return None
        return self.ready_at - self.started_at

    def fail(self, error: VoloError) -> None:
        self.state = ServiceState.FAILED
        self.error = error


def startup_tiers(services: Sequence[ServiceSpec]) -> list[list[ServiceSpec]]:
    """
    Group services into startup tiers.

    A service lands in the first tier after all of its dependencies (and its
    host, for hosted services). Dependencies on services that are not part of
    the session are ignored. Configured order is kept within a tier.

    Raises:
        ConfigError: The dependencies contain a cycle
    """
    present = {s.name for s in services}
    placed: set[str] = set()
    remaining = list(services)
    tiers: list[list[ServiceSpec]] = []

    while remaining:
        tier = [
            s
            for s in remaining
            if all(d in placed or d not in present for d in _dependencies(s))
        ]
        if not tier:
            names = ", ".join(s.name for s in remaining)
            raise ConfigError(f"dependency cycle between services: {names}")
        tiers.append(tier)
        placed.update(s.name for s in tier)
        remaining = [s for s in remaining if s.name not in placed]
    return tiers


def _dependencies(spec: ServiceSpec) -> tuple[str, ...]:
    if spec.hosted_by and spec.hosted_by not in spec.depends_on:
        return (*spec.depends_on, spec.hosted_by)
    return spec.depends_on


def launch_succeeded(processes: Iterable[ServiceProcess]) -> bool:
    """True when every required service is ready."""
    return all(p.state == ServiceState.READY for p in processes if p.spec.required)


async def port_accepts(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


class ServiceLauncher:
    """
    Spawns services as local subprocesses bound to their planned ports.

    Each child runs in its own process group so that wrapper processes
    (pnpm -> node, firebase -> java) are stopped together.
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_HOST,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        variables: Mapping[str, object] | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.host = host
        self.ready_timeout = ready_timeout
        self.stop_timeout = stop_timeout
        self.poll_interval = poll_interval
        self.variables = dict(variables or {})
        self._base_env = dict(os.environ if base_env is None else base_env)
        self.processes: list[ServiceProcess] = []

    async def launch(
        self,
        plan: PortPlan,
        paths: InstancePaths,
        services: Sequence[ServiceSpec],
    ) -> list[ServiceProcess]:
        """
        Start every planned service in dependency order.

        Services without an assignment in ``plan`` are skipped.

        Returns:
            ServiceProcesses in startup order
        """
        placed = [s for s in services if plan.get(s.name) is not None]
        tiers = startup_tiers(placed)
        processes: list[ServiceProcess] = []
        for tier in tiers:
            for spec in tier:
                assignment = plan.get(spec.name)
                assert assignment is not None
                processes.append(
                    ServiceProcess(
                        spec=spec,
                        assignment=assignment,
                        data_dir=paths.for_service(spec.name) if spec.stateful else None,
                    )
                )
        self.processes = processes
        by_name = {p.name: p for p in processes}

        offset = 0
        for tier in tiers:
            batch = processes[offset : offset + len(tier)]
            offset += len(tier)

            for proc in batch:
                blocker = self._failed_dependency(proc, by_name)
                if blocker is not None:
                    proc.fail(
                        ServiceSpawnError(
                            proc.name, f"not started: {blocker} is not ready", port=proc.port
                        )
                    )
                    continue
                await self._start(proc, plan, paths)

            await asyncio.gather(
                *(
                    self._wait_until_ready(proc, by_name)
                    for proc in batch
                    if proc.state == ServiceState.STARTING
                )
            )

            for proc in batch:
                if proc.state == ServiceState.FAILED and not proc.spec.required:
                    logger.warning("Optional service %s failed: %s", proc.name, proc.error)

            failed = [p for p in batch if p.state == ServiceState.FAILED and p.spec.required]
            if failed:
                for proc in failed:
                    logger.error("Required service %s failed: %s", proc.name, proc.error)
                await self.shutdown(processes)
                break

        return processes

    async def wait(self, processes: Sequence[ServiceProcess]) -> ServiceProcess | None:
        """
        Block until a required service exits.

        Optional services that exit are marked failed and logged.

        Returns:
            The required service that exited, or None if no required
            service has a process to watch (or all watched ones are optional
            and have exited)
        """
        watched = {
            asyncio.ensure_future(p.process.wait()): p
            for p in processes
            if p.state == ServiceState.READY and p.process is not None
        }
        try:
            while watched:
                done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    proc = watched.pop(task)
                    proc.fail(
                        ServiceExitedError(
                            proc.name, task.result(), port=proc.port, after_ready=True
                        )
                    )
                    self._fail_hosted(proc, processes)
                    if proc.spec.required:
                        logger.error("%s", proc.error)
                        return proc
                    logger.warning("%s", proc.error)
            return None
        finally:
            for task in watched:
                task.cancel()

    async def shutdown(self, processes: Sequence[ServiceProcess] | None = None) -> None:
        """
        Stop all services in reverse startup order.

        Defaults to the processes of the last ``launch``, including a launch
        that was cancelled part way.

        Each process gets SIGTERM and ``stop_timeout`` seconds before SIGKILL.
        Data directories are left untouched.
        """
        for proc in reversed(self.processes if processes is None else processes):
            if proc.process is not None:
                try:
                    await self._stop(proc)
                except OSError as e:
                    # Keep going: the remaining services still hold their ports
                    logger.error("Failed to stop %s: %s", proc.name, e)
            if proc.state in (ServiceState.STARTING, ServiceState.READY):
                proc.state = ServiceState.STOPPED

    # -------------------------------------------------------------------------

    def _failed_dependency(
        self, proc: ServiceProcess, by_name: Mapping[str, ServiceProcess]
    ) -> str | None:
        for dep in _dependencies(proc.spec):
            other = by_name.get(dep)
            if other is not None and other.state != ServiceState.READY:
                return dep
        return None

    def _fail_hosted(self, host: ServiceProcess, processes: Iterable[ServiceProcess]) -> None:
        for proc in processes:
            if proc.spec.hosted_by == host.name and proc.state == ServiceState.READY:
                returncode = host.process.returncode if host.process else None
                proc.fail(
                    ServiceExitedError(proc.name, returncode, port=proc.port, after_ready=True)
                )
                logger.warning("%s", proc.error)

    def _render_variables(
        self, proc: ServiceProcess, plan: PortPlan, paths: InstancePaths
    ) -> dict[str, object]:
        return {
            **self.variables,
            "port": proc.port,
            "host": self.host,
            "data_dir": str(proc.data_dir) if proc.data_dir else "",
            "project_root": str(paths.project_root),
            "ports": plan.ports,
        }

    async def _start(
        self,
        proc: ServiceProcess,
        plan: PortPlan,
        paths: InstancePaths,
    ) -> None:
        spec = proc.spec
        proc.state = ServiceState.STARTING
        proc.started_at = time.monotonic()

        if spec.is_hosted:
            logger.info(
                "Waiting for %s on port %d (served by %s)", spec.name, proc.port, spec.hosted_by
            )
            return

        try:
            variables = self._render_variables(proc, plan, paths)
            argv = [render_template(arg, variables, spec.name) for arg in spec.command]
            env = {
                **self._base_env,
                **{k: render_template(v, variables, spec.name) for k, v in spec.env.items()},
            }
        except ConfigError as e:
            proc.fail(e)
            return

        cwd = paths.project_root / spec.cwd if spec.cwd else paths.project_root
        logger.info("Starting %s on port %d", spec.name, proc.port)
        logger.debug("%s: %s (cwd=%s)", spec.name, " ".join(argv), cwd)

        try:
            proc.process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            proc.fail(
                ServiceSpawnError(
                    spec.name, f"cannot start {argv[0]!r}: {e.strerror or e}", port=proc.port
                )
            )
            return

        log_with_context(
            logger,
            logging.DEBUG,
            f"{spec.name} started (pid {proc.pid})",
            service=spec.name,
            port=proc.port,
            origin=str(proc.assignment.origin),
            pid=proc.pid,
        )
        proc._output_task = asyncio.create_task(self._relay_output(proc))

    async def _relay_output(self, proc: ServiceProcess) -> None:
        """Forward child output to the service logger and watch for the ready marker."""
        assert proc.process is not None and proc.process.stdout is not None
        stream = proc.process.stdout
        service_logger = get_service_logger(proc.name)
        # Read in chunks: StreamReader's line reader raises on lines over its limit
        pending = b""
        while chunk := await stream.read(OUTPUT_CHUNK_SIZE):
            *lines, pending = (pending + chunk).split(b"\n")
            if len(pending) > MAX_LINE_BYTES:
                lines.append(pending)
                pending = b""
            for raw in lines:
                self._relay_line(proc, service_logger, raw)
        if pending:
            self._relay_line(proc, service_logger, pending)

    def _relay_line(
        self, proc: ServiceProcess, service_logger: logging.Logger, raw: bytes
    ) -> None:
        line = raw.decode(errors="replace").rstrip()
        if not line:
            return
        service_logger.info(line)
        marker = proc.spec.ready_marker
        if marker and marker in line:
            proc._marker_seen.set()

    async def _wait_until_ready(
        self, proc: ServiceProcess, by_name: Mapping[str, ServiceProcess]
    ) -> None:
        """Poll until the service is ready, its process exits or the timeout elapses."""
        spec = proc.spec
        host_proc = by_name.get(spec.hosted_by) if spec.hosted_by else None
        watched = host_proc if host_proc is not None else proc
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout

        while True:
            if watched.exited or watched.state == ServiceState.FAILED:
                returncode = watched.process.returncode if watched.process else None
                proc.fail(ServiceExitedError(spec.name, returncode, port=proc.port))
                return

            if spec.ready_marker:
                ready = proc._marker_seen.is_set()
            else:
                ready = await port_accepts(self.host, proc.port)

            if ready:
                proc.state = ServiceState.READY
                proc.ready_at = time.monotonic()
                seconds = proc.startup_seconds or 0.0
                log_with_context(
                    logger,
                    logging.INFO,
                    f"{spec.name} ready on port {proc.port} ({seconds:.1f}s)",
                    service=spec.name,
                    port=proc.port,
                    pid=proc.pid,
                    startup_seconds=round(seconds, 3),
                )
                return

            if loop.time() >= deadline:
                proc.fail(
                    ServiceReadinessTimeout(
                        spec.name,
                        f"not ready after {self.ready_timeout:g}s",
                        port=proc.port,
                    )
                )
                return

            await asyncio.sleep(self.poll_interval)

    async def _stop(self, proc: ServiceProcess) -> None:
        process = proc.process
        assert process is not None
        if process.returncode is None:
            logger.info("Stopping %s (pid %d)", proc.name, process.pid)
            _signal(process, force=False)
            try:
                await asyncio.wait_for(process.wait(), self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "%s did not exit within %gs, killing", proc.name, self.stop_timeout
                )
                _signal(process, force=True)
                await process.wait()
            log_with_context(
                logger,
                logging.DEBUG,
                f"{proc.name} exited with {process.returncode}",
                service=proc.name,
                pid=process.pid,
                returncode=process.returncode,
            )

        if proc._output_task is not None:
            try:
                await asyncio.wait_for(proc._output_task, self.stop_timeout)
            except asyncio.TimeoutError:
                logger.debug("%s output still open after exit, detached", proc.name)
            except Exception:
                logger.warning("%s output relay failed", proc.name, exc_info=True)


def _signal(process: asyncio.subprocess.Process, force: bool) -> None:
    """Terminate (or kill) a child and its process group."""
    with contextlib.suppress(ProcessLookupError):
        if os.name == "nt":
            if force:
                process.kill()
            else:
                process.terminate()
        else:
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
