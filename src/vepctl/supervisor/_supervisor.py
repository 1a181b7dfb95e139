"""Lifecycle supervisor for a dependency-ordered set of services.

This module provides the LifecycleSupervisor class that walks a
ServiceGraph, starting each service and waiting for it to become ready,
then monitors the running set until something triggers teardown. anyio
task groups and cancel scopes tie the startup loop, the monitor, the
signal bridge and output pumps to a single structured lifetime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, final

import anyio

from vepctl.exceptions import (
    ConfigurationError,
    OrchestrationError,
    PortConflict,
    ReadinessTimeout,
    StartupFailure,
)
from vepctl.utils import create_null_logger

from ._container import ContainerEngine, ContainerRuntime, clean_stale_containers
from ._launcher import Launcher
from ._models import (
    ProbeKind,
    RunResult,
    RunSettings,
    ServiceEventType,
    ServiceKind,
    ServiceOutcome,
    ServiceState,
    ShutdownReason,
)
from ._output import ConsoleOutputSink, emit_event
from ._probe import PortGuard, ReadinessProbe, alive_check, tcp_check
from ._shutdown import ShutdownCoordinator
from ._signals import SignalBridge

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ._graph import ServiceGraph
    from ._models import ServiceHandle, ServiceSpec
    from ._protocol import OutputSink, ServiceLauncher


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping of a single run() call."""

    coordinator: ShutdownCoordinator
    graph: ServiceGraph
    result: RunResult
    specs: dict[str, ServiceSpec]
    ready: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    startup_complete: bool = False

    def outcome(self, spec_id: str) -> ServiceOutcome:
        outcome = self.result.outcome(spec_id)
        if outcome is None:
            outcome = ServiceOutcome(spec_id, self.specs[spec_id].required)
            self.result.outcomes.append(outcome)
        return outcome


@final
class LifecycleSupervisor:
    """Starts a ServiceGraph in order and guarantees it is torn down.

    Each call to run() owns a fresh ShutdownCoordinator. Whatever ends the
    run (a signal, a fatal startup failure, a required service exiting, or
    request_shutdown()), every service that was started is stopped before
    run() returns.
    """

    __slots__ = (
        "_coordinator",
        "_engine",
        "_install_signals",
        "_launcher",
        "_logger",
        "_output_sink",
        "_port_guard",
        "settings",
    )

    def __init__(
        self,
        settings: RunSettings | None = None,
        *,
        output_sink: OutputSink | None = None,
        launcher: ServiceLauncher | None = None,
        port_guard: PortGuard | None = None,
        engine: ContainerEngine | None = None,
        logger: FilteringBoundLogger | None = None,
        install_signals: bool = True,
    ) -> None:
        """Initialize the supervisor.

        Args:
            settings: Run parameters. Uses RunSettings defaults if None.
            output_sink: Sink for service output. Uses ConsoleOutputSink if None.
            launcher: Starts services. Uses a Launcher built from settings if None.
            port_guard: Pre-flight port checker. Built from settings if None.
            engine: Container engine for stale cleanup; detected if None.
            logger: Structured logger.
            install_signals: Whether to turn SIGINT/SIGTERM into shutdown.
        """
        self.settings = settings or RunSettings()
        self._logger = logger or create_null_logger()
        self._output_sink: OutputSink = output_sink or ConsoleOutputSink()
        self._engine = engine
        self._launcher: ServiceLauncher = launcher or Launcher(
            self._output_sink,
            engine=engine,
            engine_preference=self.settings.container_engine,
            container_prefix=self.settings.container_prefix,
            liveness_delay=self.settings.liveness_delay,
            logger=self._logger,
        )
        self._port_guard = port_guard or PortGuard(
            connect_timeout=self.settings.connect_timeout,
            logger=self._logger,
        )
        self._install_signals = install_signals
        self._coordinator: ShutdownCoordinator | None = None

    @property
    def coordinator(self) -> ShutdownCoordinator | None:
        """Return the coordinator of the current or last run."""
        return self._coordinator

    async def request_shutdown(self) -> None:
        """Stop a running supervisor; no-op if it is not running."""
        if self._coordinator is not None:
            await self._coordinator.shutdown(ShutdownReason.REQUESTED)

    async def run(self, graph: ServiceGraph) -> RunResult:
        """Start every service of graph and supervise it until shutdown.

        Args:
            graph: The services to run.

        Returns:
            The per-service outcomes and the reason the run ended.

        Raises:
            ConfigurationError: If graph is invalid; nothing is started.
        """
        specs = graph.ordered()
        coordinator = ShutdownCoordinator(
            grace_period=self.settings.grace_period,
            output_sink=self._output_sink,
            port_guard=self._port_guard,
            logger=self._logger,
        )
        self._coordinator = coordinator
        run = _Run(
            coordinator=coordinator,
            graph=graph,
            result=RunResult(
                outcomes=[ServiceOutcome(s.id, s.required) for s in specs]
            ),
            specs={s.id: s for s in specs},
        )
        self._logger.info("run_started", services=[s.id for s in specs])

        async with anyio.create_task_group() as tg:
            self._launcher.task_group = tg
            try:
                if self._install_signals:
                    bridge = SignalBridge(coordinator, logger=self._logger)
                    await tg.start(bridge.run)

                with anyio.CancelScope() as scope:
                    tg.start_soon(self._cancel_on_trigger, coordinator, scope)
                    if await self._preflight(run, specs) and await self._start_all(
                        run, specs
                    ):
                        run.startup_complete = True
                        await self._monitor(run)
            finally:
                with anyio.CancelScope(shield=True):
                    await coordinator.shutdown(ShutdownReason.REQUESTED)
                    await coordinator.wait_complete()
                self._launcher.task_group = None
                tg.cancel_scope.cancel()

        self._finish(run)
        self._logger.info(
            "run_finished",
            success=run.result.success,
            reason=run.result.shutdown_reason,
        )
        return run.result

    async def _cancel_on_trigger(
        self, coordinator: ShutdownCoordinator, scope: anyio.CancelScope
    ) -> None:
        # Abandons startup and monitoring once any path triggers teardown
        await coordinator.wait_triggered()
        scope.cancel()

    async def _preflight(self, run: _Run, specs: tuple[ServiceSpec, ...]) -> bool:
        # Ports are checked in start order, each owner's ports as declared
        position = {spec.id: i for i, spec in enumerate(specs)}
        claims = sorted(
            run.graph.claimed_ports().items(), key=lambda claim: position[claim[1]]
        )
        for port, owner in claims:
            if owner in run.failed:
                continue
            try:
                await self._port_guard.wait_free(
                    port,
                    max_attempts=self.settings.max_port_wait,
                    interval=self.settings.port_wait_interval,
                )
            except PortConflict as e:
                if not await self._fail(run, run.specs[owner], e):
                    return False

        if self.settings.clean_stale and any(
            s.kind == ServiceKind.CONTAINER for s in specs
        ):
            await self._clean_stale()
        return True

    async def _clean_stale(self) -> None:
        try:
            if self._engine is None:
                self._engine = ContainerEngine.detect(
                    self.settings.container_engine, logger=self._logger
                )
            _ = await clean_stale_containers(
                self._engine,
                f"{self.settings.container_prefix}-",
                logger=self._logger,
            )
        except (ConfigurationError, OSError) as e:
            # Starting the first container reports the engine problem
            self._logger.warning("stale_cleanup_skipped", error=str(e))

    async def _start_all(self, run: _Run, specs: tuple[ServiceSpec, ...]) -> bool:
        """Start specs in order.

        Returns:
            True once every spec was processed, False if the run was aborted
            or teardown began meanwhile.
        """
        coordinator = run.coordinator
        for spec in specs:
            if coordinator.triggered:
                return False
            if spec.id in run.failed:
                continue

            for dep in spec.depends_on:
                if dep in run.failed and run.specs[dep].required:
                    msg = f"Required dependency '{dep}' of '{spec.id}' failed"
                    error = StartupFailure(msg, service_id=spec.id)
                    if not await self._fail(run, spec, error):
                        return False
                    break
            if spec.id in run.failed:
                continue

            try:
                handle = await coordinator.track(partial(self._launcher.start, spec))
            except StartupFailure as e:
                if not await self._fail(run, spec, e):
                    return False
                continue
            if handle is None:
                return False
            run.outcome(spec.id).launched = True

            try:
                attempts = await self._wait_ready(spec, handle)
            except ReadinessTimeout as e:
                if handle.state == ServiceState.STARTING:
                    handle.transition(ServiceState.FAILED)
                diagnostics = await self._container_logs(handle)
                if not await self._fail(
                    run, spec, e, handle=handle, diagnostics=diagnostics
                ):
                    return False
                continue

            # Teardown may have claimed the handle while the probe ran
            if handle.state != ServiceState.STARTING:
                return False
            handle.transition(ServiceState.READY)
            run.ready.add(spec.id)
            self._logger.info("service_ready", service=spec.id, attempts=attempts)
            await emit_event(
                self._output_sink,
                spec.id,
                ServiceEventType.READY,
                runtime_ref=handle.runtime_ref,
            )
        return True

    async def _wait_ready(self, spec: ServiceSpec, handle: ServiceHandle) -> int:
        probe = spec.probe
        if probe is None:
            return 0

        if probe.kind == ProbeKind.TCP and probe.port is not None:
            check = tcp_check(
                probe.host,
                probe.port,
                connect_timeout=self.settings.connect_timeout,
            )
        else:
            check = alive_check(handle.runtime, hold=probe.hold)

        readiness = ReadinessProbe(
            check,
            timeout=(
                probe.timeout
                if probe.timeout is not None
                else self.settings.probe_timeout
            ),
            poll_interval=(
                probe.poll_interval
                if probe.poll_interval is not None
                else self.settings.probe_interval
            ),
            name=spec.id,
        )
        return await readiness.wait()

    async def _container_logs(self, handle: ServiceHandle) -> str | None:
        runtime = handle.runtime
        if handle.kind != ServiceKind.CONTAINER or not isinstance(
            runtime, ContainerRuntime
        ):
            return None
        try:
            return await runtime.logs()
        except OSError as e:
            self._logger.warning(
                "container_logs_unavailable", service=handle.spec_id, error=str(e)
            )
            return None

    async def _fail(
        self,
        run: _Run,
        spec: ServiceSpec,
        error: OrchestrationError,
        *,
        handle: ServiceHandle | None = None,
        diagnostics: str | None = None,
    ) -> bool:
        """Record a startup failure, aborting the run if spec is required.

        Diagnostics, given or carried by error, are written to the sink line
        by line.

        Returns:
            True if the run continues without spec, False if it was aborted.
        """
        run.failed.add(spec.id)
        outcome = run.outcome(spec.id)
        outcome.state = ServiceState.FAILED
        outcome.error = str(error)

        await emit_event(
            self._output_sink,
            spec.id,
            ServiceEventType.FAILED,
            runtime_ref=handle.runtime_ref if handle is not None else None,
            message=str(error),
        )
        diagnostics = diagnostics or getattr(error, "diagnostics", None)
        if diagnostics:
            for line in diagnostics.splitlines():
                try:  # noqa: SIM105
                    await self._output_sink.write_line(
                        spec.id, "diagnostics", "stderr", line
                    )
                except Exception:  # noqa: BLE001, S110
                    # Output sink errors should not crash the supervisor
                    pass

        if not spec.required:
            self._logger.warning(
                "optional_service_failed",
                service=spec.id,
                error=str(error),
                dependents=run.graph.dependents(spec.id),
            )
            return True

        self._logger.error(
            "required_service_failed",
            service=spec.id,
            error=str(error),
            error_type=type(error).__name__,
        )
        if run.result.fatal_error is None:
            run.result.fatal_error = error
        await run.coordinator.shutdown(ShutdownReason.STARTUP_FAILURE)
        return False

    async def _monitor(self, run: _Run) -> None:
        coordinator = run.coordinator
        exited: set[str] = set()
        while not coordinator.triggered:
            alive = 0
            for handle in coordinator.handles:
                if handle.state != ServiceState.READY or handle.spec_id in exited:
                    continue
                if await self._is_alive(handle):
                    alive += 1
                    continue

                exited.add(handle.spec_id)
                if await self._on_exit(run, handle):
                    return

            if alive == 0:
                self._logger.info("all_services_exited")
                await coordinator.shutdown(ShutdownReason.ALL_EXITED)
                return
            await anyio.sleep(self.settings.monitor_interval)

    async def _on_exit(self, run: _Run, handle: ServiceHandle) -> bool:
        """Report an unexpected exit.

        Returns:
            True if the exit triggered teardown.
        """
        spec = run.specs[handle.spec_id]
        run.outcome(spec.id).exited_unexpectedly = True
        exit_code = handle.runtime.exit_code
        await emit_event(
            self._output_sink,
            spec.id,
            ServiceEventType.EXITED,
            runtime_ref=handle.runtime_ref,
            exit_code=exit_code,
        )

        if not spec.required:
            self._logger.warning(
                "optional_service_exited", service=spec.id, exit_code=exit_code
            )
            return False

        self._logger.error(
            "required_service_exited", service=spec.id, exit_code=exit_code
        )
        await run.coordinator.shutdown(ShutdownReason.SERVICE_EXITED)
        return True

    async def _is_alive(self, handle: ServiceHandle) -> bool:
        try:
            return await handle.runtime.is_alive()
        except Exception as e:  # noqa: BLE001
            self._logger.debug(
                "liveness_unknown", service=handle.spec_id, error=str(e)
            )
            return True

    def _finish(self, run: _Run) -> None:
        result = run.result
        coordinator = run.coordinator
        for handle in coordinator.handles:
            outcome = run.outcome(handle.spec_id)
            outcome.launched = True
            outcome.state = handle.state

        # Startup cut short by a signal or request leaves required work undone
        if not run.startup_complete and result.fatal_error is None:
            for outcome in result.outcomes:
                if not outcome.required or outcome.error is not None:
                    continue
                if outcome.spec_id in run.ready:
                    continue
                outcome.error = (
                    "interrupted before ready"
                    if outcome.launched
                    else "not started: shutdown during startup"
                )

        result.shutdown_reason = coordinator.reason
        result.teardown_warnings = coordinator.warnings
