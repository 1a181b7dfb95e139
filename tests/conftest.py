"""Shared test fixtures and fakes for vepctl tests."""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import anyio
import pytest
from anyio.abc import TaskGroup

from vepctl.supervisor import (
    ContainerAction,
    LifecycleSupervisor,
    OutputSink,
    PortGuard,
    ProbeSpec,
    ProcessAction,
    RunResult,
    RunSettings,
    ServiceEvent,
    ServiceEventType,
    ServiceGraph,
    ServiceHandle,
    ServiceKind,
    ServiceSpec,
    emit_event,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRuntime:
    """In-memory ServiceRuntime recording every call to a shared journal."""

    def __init__(
        self,
        name: str,
        journal: list[str],
        *,
        alive: bool = True,
        stubborn: bool = False,
        unkillable: bool = False,
    ) -> None:
        self.name = name
        self.journal = journal
        self.alive = alive
        self.stubborn = stubborn
        self.unkillable = unkillable
        self.calls: list[str] = []
        self._exit_code: int | None = None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    def exit(self, code: int) -> None:
        self.alive = False
        self._exit_code = code

    def _record(self, call: str) -> None:
        self.calls.append(call)
        self.journal.append(f"{call}:{self.name}")

    async def is_alive(self) -> bool:
        return self.alive

    async def terminate(self) -> None:
        self._record("terminate")
        if not self.stubborn:
            self.exit(-15)

    async def kill(self) -> None:
        self._record("kill")
        if not self.unkillable:
            self.exit(-9)

    async def release(self) -> None:
        self._record("release")


class FakeLauncher:
    """ServiceLauncher handing out FakeRuntimes instead of starting anything."""

    def __init__(self, sink: OutputSink | None = None) -> None:
        self.sink = sink
        self.task_group: TaskGroup | None = None
        self.journal: list[str] = []
        self.started: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.runtimes: dict[str, FakeRuntime] = {}

    def runtime(self, service_id: str, **kwargs: bool) -> FakeRuntime:
        """Pre-configure the runtime handed out for service_id."""
        runtime = FakeRuntime(service_id, self.journal, **kwargs)
        self.runtimes[service_id] = runtime
        return runtime

    async def start(self, spec: ServiceSpec) -> ServiceHandle:
        if spec.id in self.failures:
            raise self.failures[spec.id]
        self.started.append(spec.id)
        self.journal.append(f"start:{spec.id}")
        runtime = self.runtimes.get(spec.id) or self.runtime(spec.id)
        handle = ServiceHandle(
            spec_id=spec.id,
            kind=spec.kind,
            runtime_ref=f"fake-{spec.id}",
            runtime=runtime,
            claims_ports=spec.claims_ports,
        )
        if self.sink is not None:
            await emit_event(
                self.sink,
                spec.id,
                ServiceEventType.STARTED,
                runtime_ref=handle.runtime_ref,
            )
        return handle


@dataclass
class RecordingSink:
    """OutputSink keeping every line and event in memory."""

    lines: list[tuple[str, str, str, str]] = field(default_factory=list)
    events: list[ServiceEvent] = field(default_factory=list)
    _waiters: dict[tuple[str, ServiceEventType], anyio.Event] = field(
        default_factory=dict
    )

    async def write_line(
        self,
        service_name: str,
        runtime_ref: str,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        self.lines.append((service_name, runtime_ref, stream, line))

    async def write_event(self, service_name: str, event: ServiceEvent) -> None:
        self.events.append(event)
        self._waiter(service_name, event.event_type).set()

    def _waiter(self, service_name: str, event_type: ServiceEventType) -> anyio.Event:
        key = (service_name, event_type)
        if key not in self._waiters:
            self._waiters[key] = anyio.Event()
        return self._waiters[key]

    async def wait_for(self, service_name: str, event_type: ServiceEventType) -> None:
        await self._waiter(service_name, event_type).wait()

    def event_types(self, service_name: str) -> list[ServiceEventType]:
        return [e.event_type for e in self.events if e.service_name == service_name]


# ---------------------------------------------------------------------------
# Helper functions for building specs and running the supervisor
# ---------------------------------------------------------------------------


def process_spec(
    service_id: str,
    *,
    depends_on: tuple[str, ...] = (),
    required: bool = True,
    probe: ProbeSpec | None = None,
    claims_ports: tuple[int, ...] = (),
) -> ServiceSpec:
    return ServiceSpec(
        id=service_id,
        kind=ServiceKind.PROCESS,
        action=ProcessAction(command=(f"vep-{service_id}",)),
        depends_on=depends_on,
        probe=probe,
        required=required,
        claims_ports=claims_ports,
    )


def container_spec(
    service_id: str,
    *,
    depends_on: tuple[str, ...] = (),
    required: bool = True,
    probe: ProbeSpec | None = None,
) -> ServiceSpec:
    return ServiceSpec(
        id=service_id,
        kind=ServiceKind.CONTAINER,
        action=ContainerAction(image=f"localhost/{service_id}:latest"),
        depends_on=depends_on,
        probe=probe,
        required=required,
    )


def fast_settings(**overrides: float | int | bool | str) -> RunSettings:
    """RunSettings with intervals short enough for unit tests."""
    values: dict[str, float | int | bool | str] = {
        "grace_period": 0.2,
        "probe_timeout": 0.5,
        "probe_interval": 0.01,
        "connect_timeout": 0.2,
        "max_port_wait": 2,
        "port_wait_interval": 0.0,
        "monitor_interval": 0.01,
        "liveness_delay": 0.0,
        "clean_stale": False,
    }
    values.update(overrides)
    return RunSettings(**values)  # pyright: ignore[reportArgumentType]


async def never_bound(port: int) -> bool:  # noqa: ARG001
    return False


async def run_until(
    supervisor: LifecycleSupervisor,
    graph: ServiceGraph,
    service_id: str,
    event_type: ServiceEventType,
    sink: RecordingSink,
) -> RunResult:
    """Run the supervisor and request shutdown once service_id emits event_type."""
    results: list[RunResult] = []

    async def runner() -> None:
        results.append(await supervisor.run(graph))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(runner)
            await sink.wait_for(service_id, event_type)
            await supervisor.request_shutdown()
    return results[0]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def launcher(sink: RecordingSink) -> FakeLauncher:
    return FakeLauncher(sink)


@pytest.fixture
def free_ports() -> PortGuard:
    return PortGuard(is_bound=never_bound)


@pytest.fixture
def make_supervisor(
    sink: RecordingSink, launcher: FakeLauncher, free_ports: PortGuard
) -> Callable[..., LifecycleSupervisor]:
    """Return a factory for supervisors wired to the in-memory fakes."""

    def _make(
        settings: RunSettings | None = None,
        *,
        port_guard: PortGuard | None = None,
    ) -> LifecycleSupervisor:
        return LifecycleSupervisor(
            settings or fast_settings(),
            output_sink=sink,
            launcher=launcher,
            port_guard=port_guard or free_ports,
            install_signals=False,
        )

    return _make


PIPELINE_TOML = """
[supervisor]
grace_period = 3.0

[variables]
BROKER_PORT = 5556

[[services]]
id = "broker"
kind = "process"
command = ["vep-broker", "--port", "${BROKER_PORT}"]
claims_ports = [5556]
probe = { kind = "tcp", port = 5556 }

[[services]]
id = "databroker"
kind = "container"
image = "ghcr.io/eclipse/kuksa.val/databroker:0.4"
network = "host"
args = ["--insecure"]
depends_on = ["broker"]

[[services]]
id = "exporter"
kind = "process"
command = ["vep-exporter"]
cwd = "exporter"
required = false
depends_on = ["databroker"]
probe = { kind = "alive", hold = 0.5 }
"""


@pytest.fixture
def pipeline_file(tmp_path: Path) -> Path:
    """Write a three-service pipeline file and return its path."""
    path = tmp_path / "pipeline.toml"
    path.write_text(PIPELINE_TOML)
    return path
