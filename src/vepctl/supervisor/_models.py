"""Data models for the supervisor system.

This module defines the core data types for service orchestration:
- ServiceKind: Native process or container instance
- ServiceState: Lifecycle states for started services
- ServiceEventType / ServiceEvent: Lifecycle event records
- ProcessAction / ContainerAction: Opaque start actions
- ProbeSpec: Readiness probe description
- ServiceSpec: Immutable service description
- ServiceHandle: Mutable reference to a started service
- ServiceOutcome / RunResult: Per-run reporting
- RunSettings: Run parameters
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import TYPE_CHECKING, Literal

from vepctl.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from ._protocol import ServiceRuntime

type EngineName = Literal["auto", "podman", "docker"]


def get_timestamp() -> str:
    """Get current timestamp in ISO 8601 format."""
    import pendulum  # noqa: PLC0415

    return pendulum.now("UTC").to_iso8601_string()


class ServiceKind(StrEnum):
    """Kinds of units the supervisor can start."""

    PROCESS = "process"
    CONTAINER = "container"


class ServiceState(StrEnum):
    """Service lifecycle states.

    States advance in one direction only:
    - STARTING: Start action succeeded, readiness not yet confirmed
    - READY: Service passed its readiness probe (or has none)
    - STOPPING: Graceful stop has been requested
    - STOPPED: Underlying process or container is confirmed gone
    - FAILED: Service never became ready; terminal
    """

    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


_TRANSITIONS: dict[ServiceState, frozenset[ServiceState]] = {
    ServiceState.STARTING: frozenset(
        {ServiceState.READY, ServiceState.STOPPING, ServiceState.FAILED}
    ),
    ServiceState.READY: frozenset({ServiceState.STOPPING}),
    ServiceState.STOPPING: frozenset({ServiceState.STOPPED}),
    ServiceState.STOPPED: frozenset(),
    ServiceState.FAILED: frozenset(),
}


class ServiceEventType(StrEnum):
    """Types of service lifecycle events.

    - STARTED: Start action succeeded
    - READY: Readiness probe passed
    - FAILED: Service failed to start or become ready
    - EXITED: Service went away without being asked to
    - STOPPING: Graceful stop requested
    - STOPPED: Service confirmed stopped
    - KILLED: Service was force-terminated
    """

    STARTED = "started"
    READY = "ready"
    FAILED = "failed"
    EXITED = "exited"
    STOPPING = "stopping"
    STOPPED = "stopped"
    KILLED = "killed"


@dataclass(frozen=True, slots=True)
class ServiceEvent:
    """Immutable service lifecycle event.

    Attributes:
        service_name: Name of the service that generated the event.
        event_type: Type of lifecycle event.
        timestamp: ISO 8601 formatted timestamp.
        runtime_ref: Process id or container name, if applicable.
        exit_code: Exit code if the service terminated.
        message: Optional human-readable message.
    """

    service_name: str
    event_type: ServiceEventType
    timestamp: str
    runtime_ref: str | None = None
    exit_code: int | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessAction:
    """Start action for a native process.

    Attributes:
        command: Executable and arguments.
        cwd: Working directory for the process.
        env: Variables merged over the inherited environment.
    """

    command: tuple[str, ...]
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ContainerAction:
    """Start action for a container instance.

    Attributes:
        image: Image reference to run.
        args: Command and arguments passed after the image.
        network: Network mode (e.g. "host"), engine default if None.
        ports: Port publish specs in "host:container" form.
        volumes: Mount specs in "src:dst[:opts]" form.
        env: Environment variables set inside the container.
        cap_add: Extra Linux capabilities (e.g. "NET_RAW").
        platform_args: Extra engine arguments (e.g. "--arch", "arm64").
        pull_missing: Pull the image when absent instead of failing.
    """

    image: str
    args: tuple[str, ...] = ()
    network: str | None = None
    ports: tuple[str, ...] = ()
    volumes: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    cap_add: tuple[str, ...] = ()
    platform_args: tuple[str, ...] = ()
    pull_missing: bool = False


class ProbeKind(StrEnum):
    """Built-in readiness checks."""

    TCP = "tcp"
    ALIVE = "alive"


@dataclass(frozen=True, slots=True)
class ProbeSpec:
    """Readiness probe description.

    Attributes:
        kind: Which built-in check to run.
        host: Host for TCP checks.
        port: Port for TCP checks.
        hold: Seconds the service must stay alive for ALIVE checks.
        timeout: Probe timeout; run default if None.
        poll_interval: Delay between attempts; run default if None.
    """

    kind: ProbeKind = ProbeKind.TCP
    host: str = "127.0.0.1"
    port: int | None = None
    hold: float = 1.0
    timeout: float | None = None
    poll_interval: float | None = None


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    """Immutable description of one service to start.

    Attributes:
        id: Unique service name, also used as a dependency reference.
        kind: Native process or container.
        action: Start action, passed through to the launcher untouched.
        depends_on: Ids that must be ready before this service starts.
        probe: Readiness probe; ready immediately on start if None.
        required: Whether failure aborts the whole run.
        claims_ports: TCP ports this service binds.
    """

    id: str
    kind: ServiceKind
    action: ProcessAction | ContainerAction
    depends_on: tuple[str, ...] = ()
    probe: ProbeSpec | None = None
    required: bool = True
    claims_ports: tuple[int, ...] = ()


@dataclass(slots=True, eq=False)
class ServiceHandle:
    """Live reference to one started process or container.

    Attributes:
        spec_id: Id of the spec this handle was started from.
        kind: Native process or container.
        runtime_ref: Process id or container name.
        runtime: Adapter used to observe and stop the underlying unit.
        state: Current lifecycle state.
        started_at: ISO 8601 timestamp of the start.
        stopped_at: ISO 8601 timestamp of the confirmed stop.
        exit_code: Exit code, if known.
        forced: Whether force termination was needed.
        claims_ports: TCP ports to confirm free once stopped.
    """

    spec_id: str
    kind: ServiceKind
    runtime_ref: str
    runtime: ServiceRuntime = field(repr=False)
    state: ServiceState = ServiceState.STARTING
    started_at: str = field(default_factory=get_timestamp)
    stopped_at: str | None = None
    exit_code: int | None = None
    forced: bool = False
    claims_ports: tuple[int, ...] = ()

    def transition(self, target: ServiceState) -> None:
        """Move the handle to a new state.

        Args:
            target: The state to move to.

        Raises:
            InvalidTransitionError: If target is not reachable from the
                current state.
        """
        if target not in _TRANSITIONS[self.state]:
            msg = f"Service '{self.spec_id}' cannot go from {self.state} to {target}"
            raise InvalidTransitionError(
                msg,
                service_id=self.spec_id,
                current=self.state.value,
                target=target.value,
            )
        self.state = target


class ShutdownReason(StrEnum):
    """Why teardown was triggered."""

    SIGNAL = "signal"
    STARTUP_FAILURE = "startup-failure"
    SERVICE_EXITED = "service-exited"
    ALL_EXITED = "all-exited"
    REQUESTED = "requested"


@dataclass(slots=True)
class ServiceOutcome:
    """What happened to one spec during a run."""

    spec_id: str
    required: bool
    state: ServiceState | None = None
    launched: bool = False
    error: str | None = None
    exited_unexpectedly: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class RunResult:
    """Summary of one supervisor run.

    Attributes:
        outcomes: Per-spec outcomes, in start order.
        fatal_error: The first error that aborted the run, if any.
        shutdown_reason: What triggered teardown.
        teardown_warnings: Problems found while tearing down.
    """

    outcomes: list[ServiceOutcome] = field(default_factory=list)
    fatal_error: Exception | None = None
    shutdown_reason: ShutdownReason | None = None
    teardown_warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every required service started and became ready."""
        if self.fatal_error is not None:
            return False
        return not any(o.required and o.failed for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def outcome(self, spec_id: str) -> ServiceOutcome | None:
        return next((o for o in self.outcomes if o.spec_id == spec_id), None)


@dataclass(frozen=True, slots=True)
class RunSettings:
    """Run parameters for the supervisor.

    Attributes:
        grace_period: Seconds services get to stop before being killed.
        probe_timeout: Default readiness timeout in seconds.
        probe_interval: Default delay between readiness attempts.
        connect_timeout: Timeout for a single TCP connect attempt.
        max_port_wait: Port-free checks before declaring a conflict.
        port_wait_interval: Delay between port-free checks.
        monitor_interval: Delay between liveness sweeps once running.
        liveness_delay: Delay before confirming a new container still runs.
        container_engine: Container engine binary, or "auto" to detect one.
        container_prefix: Name prefix of containers started by this run.
        clean_stale: Remove prefixed containers left by earlier runs.
    """

    grace_period: float = 2.0
    probe_timeout: float = 10.0
    probe_interval: float = 0.5
    connect_timeout: float = 0.5
    max_port_wait: int = 10
    port_wait_interval: float = 1.0
    monitor_interval: float = 1.0
    liveness_delay: float = 0.5
    container_engine: EngineName = "auto"
    container_prefix: str = "vep"
    clean_stale: bool = True
