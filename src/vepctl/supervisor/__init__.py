"""Supervisor package for orchestrating dependency-ordered services.

This package starts native processes and containers in dependency order,
waits for each to become ready, monitors them, and tears every started
service down exactly once, however the run ends.

Key Components:
    - ServiceSpec: Immutable description of one service
    - ServiceGraph: Validated, dependency-ordered set of specs
    - ServiceHandle: Live reference to a started service
    - ReadinessProbe: Bounded poll of a readiness check
    - PortGuard: Pre-flight wait for a TCP port to be free
    - Launcher: Turns a spec into a running ServiceHandle
    - ContainerEngine: podman/docker CLI adapter
    - ShutdownCoordinator: Idempotent, escalating teardown
    - SignalBridge: SIGINT/SIGTERM to shutdown
    - LifecycleSupervisor: Runs a graph and returns a RunResult
    - OutputSink: Protocol for output consumption
    - ConsoleOutputSink: Console output implementation

Example:
    >>> from vepctl.supervisor import (
    ...     LifecycleSupervisor,
    ...     ProcessAction,
    ...     ServiceGraph,
    ...     ServiceKind,
    ...     ServiceSpec,
    ... )
    >>> graph = ServiceGraph([
    ...     ServiceSpec(
    ...         id="receiver",
    ...         kind=ServiceKind.PROCESS,
    ...         action=ProcessAction(command=("vep-receiver", "--port", "5000")),
    ...     ),
    ... ])
    >>> result = await LifecycleSupervisor().run(graph)  # Blocks until shutdown
"""

from ._container import (
    ContainerEngine,
    ContainerRuntime,
    build_run_args,
    clean_stale_containers,
)
from ._graph import ServiceGraph
from ._launcher import Launcher, ProcessRuntime, resolve_executable
from ._models import (
    ContainerAction,
    EngineName,
    ProbeKind,
    ProbeSpec,
    ProcessAction,
    RunResult,
    RunSettings,
    ServiceEvent,
    ServiceEventType,
    ServiceHandle,
    ServiceKind,
    ServiceOutcome,
    ServiceSpec,
    ServiceState,
    ShutdownReason,
)
from ._output import ConsoleOutputSink, emit_event, render_summary
from ._probe import PortGuard, ReadinessProbe, alive_check, tcp_check
from ._protocol import OutputSink, ServiceLauncher, ServiceRuntime
from ._shutdown import ShutdownCoordinator
from ._signals import SignalBridge
from ._supervisor import LifecycleSupervisor

__all__ = [
    "ConsoleOutputSink",
    "ContainerAction",
    "ContainerEngine",
    "ContainerRuntime",
    "EngineName",
    "Launcher",
    "LifecycleSupervisor",
    "OutputSink",
    "PortGuard",
    "ProbeKind",
    "ProbeSpec",
    "ProcessAction",
    "ProcessRuntime",
    "ReadinessProbe",
    "RunResult",
    "RunSettings",
    "ServiceEvent",
    "ServiceEventType",
    "ServiceGraph",
    "ServiceHandle",
    "ServiceKind",
    "ServiceLauncher",
    "ServiceOutcome",
    "ServiceRuntime",
    "ServiceSpec",
    "ServiceState",
    "ShutdownCoordinator",
    "ShutdownReason",
    "SignalBridge",
    "alive_check",
    "build_run_args",
    "clean_stale_containers",
    "emit_event",
    "render_summary",
    "resolve_executable",
    "tcp_check",
]
