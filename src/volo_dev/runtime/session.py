"""
Dev session coordinator.

One session = one ``volo-dev start``:

1. resolve the port plan (once; it never changes while services run)
2. abort if a required service could not be placed
3. create the project's data directories and the emulator config
4. launch services in dependency order
5. wait for Ctrl+C / SIGTERM, or for a required service to die
6. stop everything in reverse startup order, leaving data on disk
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable
from typing import TypeVar

from volo_dev.core.config import DevConfig
from volo_dev.core.database_url import embedded_database_url
from volo_dev.core.errors import DirectoryCreationError, PortExhaustionError

from .isolation import InstancePaths, ensure_directories, resolve_instance_paths
from .launcher import ServiceLauncher, launch_succeeded
from .ports import PortPlan, Probe, build_port_plan
from .report import render_paths, render_plan, render_status
from .services import FIREBASE_AUTH, POSTGRES, ServiceSpec, port_key, write_emulator_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

T = TypeVar("T")


class DevSession:
    """Runs the services of one project until interrupted."""

    def __init__(
        self,
        config: DevConfig,
        *,
        probe: Probe | None = None,
        launcher: ServiceLauncher | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.paths: InstancePaths = resolve_instance_paths(config.project_root)
        self.plan: PortPlan | None = None
        self._probe = probe
        self._handle_signals = handle_signals
        self.launcher = launcher or ServiceLauncher(
            host=config.host,
            ready_timeout=config.ready_timeout,
            stop_timeout=config.stop_timeout,
            base_env=config.env,
        )

    def resolve(self) -> PortPlan:
        """Compute the port plan; later calls return the same plan."""
        if self.plan is None:
            self.plan = build_port_plan(
                self.config.services,
                self.config.max_attempts,
                host=self.config.host,
                probe=self._probe,
            )
        return self.plan

    def blocking_failures(self) -> list[PortExhaustionError]:
        """Exhaustion failures of required services."""
        plan = self.resolve()
        return [
            failure
            for failure in plan.failures
            if (spec := self.config.service(failure.service or "")) is not None and spec.required
        ]

    def launch_variables(self, plan: PortPlan) -> dict[str, object]:
        """Template variables shared by all services."""
        postgres = plan.get(POSTGRES)
        database_url = (
            embedded_database_url(postgres.port) if postgres else self.config.database_url
        )
        return {
            "database_url": database_url,
            "project_id": self.config.firebase_project_id,
            "emulator_config": str(self.paths.firebase_config),
        }

    async def run(self, check: bool = False) -> int:
        """
        Run the session.

        Args:
            check: Stop again as soon as every required service is ready

        Returns:
            Process exit code: 0 when all required services came up (and,
            unless ``check``, none died before the user stopped the session)
        """
        plan = self.resolve()
        _log_block(render_plan(plan))

        blocking = self.blocking_failures()
        if blocking:
            for failure in blocking:
                logger.error("%s", failure)
                logger.error(
                    "Stop the other instance, or set %s in .env to a free range",
                    port_key(failure.service or ""),
                )
            return EXIT_FAILED

        services = self._prepare(plan)
        if services is None:
            return EXIT_FAILED
        _log_block(render_paths(self.paths))

        self.launcher.variables.update(self.launch_variables(plan))
        stop = asyncio.Event()
        if self._handle_signals:
            self._install_signal_handlers(stop)

        try:
            processes, interrupted = await _until_stopped(
                self.launcher.launch(plan, self.paths, services), stop
            )
            if interrupted:
                logger.warning("Interrupted during startup")
                return EXIT_INTERRUPTED
            assert processes is not None
            if not launch_succeeded(processes):
                return EXIT_FAILED

            if check:
                logger.info("All required services ready, stopping (check mode)")
                return EXIT_OK

            _log_block(render_status(processes, host=self.config.host))
            logger.info("All required services ready. Press Ctrl+C to stop.")
            exited, interrupted = await _until_stopped(self.launcher.wait(processes), stop)
            if not interrupted and exited is None:
                await stop.wait()
            return EXIT_FAILED if exited is not None else EXIT_OK
        finally:
            await self.launcher.shutdown()
            if self._handle_signals:
                self._remove_signal_handlers()
            _log_block(render_status(self.launcher.processes, plan, self.config.host))

    def _prepare(self, plan: PortPlan) -> list[ServiceSpec] | None:
        """Create data directories; drop optional services whose directory failed."""
        services = [s for s in self.config.services if plan.get(s.name) is not None]
        try:
            ensure_directories(self.paths, services=())
        except DirectoryCreationError as e:
            logger.error("%s", e)
            return None

        kept: list[ServiceSpec] = []
        for spec in services:
            if spec.stateful:
                try:
                    ensure_directories(self.paths, services=(spec.name,))
                except DirectoryCreationError as e:
                    if spec.required:
                        logger.error("%s", e)
                        return None
                    logger.warning("Skipping %s: %s", spec.name, e)
                    continue
            kept.append(spec)

        if plan.get(FIREBASE_AUTH) is not None:
            write_emulator_config(self.paths.firebase_config, plan, self.config.host)
        return kept

    def _install_signal_handlers(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows or off the main thread; Ctrl+C then
            # arrives as task cancellation and the finally block still runs.
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.add_signal_handler(sig, stop.set)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.remove_signal_handler(sig)


async def _until_stopped(work: Awaitable[T], stop: asyncio.Event) -> tuple[T | None, bool]:
    """Await ``work`` unless ``stop`` is set first; returns (result, interrupted)."""
    task = asyncio.ensure_future(work)
    stopper = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        stopper.cancel()
    if task.done():
        return task.result(), False
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    return None, True


def _log_block(text: str) -> None:
    for line in text.splitlines():
        logger.info(line)
