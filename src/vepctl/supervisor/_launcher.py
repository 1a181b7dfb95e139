"""Launcher: turns a ServiceSpec into a running, observable ServiceHandle.

Native processes are spawned with anyio and their output is streamed to
the OutputSink. Containers are started detached through a ContainerEngine
and checked once for an immediate crash.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Literal, final

import anyio
import anyio.abc
from anyio.streams.text import TextReceiveStream

from vepctl.exceptions import ConfigurationError, StartupFailure
from vepctl.utils import create_null_logger

from ._container import ContainerEngine, ContainerRuntime
from ._models import (
    ContainerAction,
    ProcessAction,
    ServiceEventType,
    ServiceHandle,
    ServiceKind,
    ServiceSpec,
)
from ._output import emit_event

if TYPE_CHECKING:
    from collections.abc import AsyncIterable

    from structlog.typing import FilteringBoundLogger

    from ._models import EngineName
    from ._protocol import OutputSink


def resolve_executable(command: str, cwd: Path | None = None) -> str | None:
    """Resolve a command to an executable path.

    Commands containing a path separator are resolved against cwd and must
    exist and be executable; bare names are looked up on PATH.

    Returns:
        The executable path, or None if it cannot be found.
    """
    if os.sep not in command:
        return shutil.which(command)
    path = Path(command)
    if not path.is_absolute() and cwd is not None:
        path = cwd / path
    if path.is_file() and os.access(path, os.X_OK):
        return str(path)
    return None


@final
class ProcessRuntime:
    """ServiceRuntime for a native child process."""

    __slots__ = ("_process", "pid")

    def __init__(self, process: anyio.abc.Process) -> None:
        self._process = process
        self.pid = process.pid

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    async def is_alive(self) -> bool:
        return self._process.returncode is None

    async def terminate(self) -> None:
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()

    async def kill(self) -> None:
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    async def release(self) -> None:
        # Reap the child so it does not linger as a zombie
        with anyio.move_on_after(1.0):
            _ = await self._process.wait()

    async def wait(self) -> int:
        return await self._process.wait()


@final
class Launcher:
    """Starts services and produces ServiceHandles.

    A Launcher never registers handles itself; on any failure it raises
    StartupFailure and leaves nothing running.
    """

    __slots__ = (
        "_engine",
        "_logger",
        "_output_sink",
        "container_prefix",
        "engine_preference",
        "liveness_delay",
        "run_token",
        "task_group",
    )

    def __init__(
        self,
        output_sink: OutputSink,
        *,
        engine: ContainerEngine | None = None,
        engine_preference: EngineName = "auto",
        container_prefix: str = "vep",
        run_token: str | None = None,
        liveness_delay: float = 0.5,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the launcher.

        Args:
            output_sink: Sink for service output and events.
            engine: Container engine; detected on first container start if None.
            engine_preference: Engine detected when engine is None.
            container_prefix: Prefix of container names started by this run.
            run_token: Per-run name component; the current pid plus a random
                suffix if None, so supervisors in one process never collide.
            liveness_delay: Seconds to wait before confirming a new container runs.
            logger: Structured logger.
        """
        self._output_sink = output_sink
        self._engine = engine
        self._logger = logger or create_null_logger()
        self.container_prefix = container_prefix
        self.engine_preference: EngineName = engine_preference
        self.run_token = run_token or f"{os.getpid()}-{uuid.uuid4().hex[:6]}"
        self.liveness_delay = liveness_delay
        self.task_group: anyio.abc.TaskGroup | None = None

    @property
    def engine(self) -> ContainerEngine:
        if self._engine is None:
            self._engine = ContainerEngine.detect(
                self.engine_preference, logger=self._logger
            )
        return self._engine

    def container_name(self, service_id: str) -> str:
        return f"{self.container_prefix}-{self.run_token}-{service_id}"

    async def start(self, spec: ServiceSpec) -> ServiceHandle:
        """Start one service.

        Args:
            spec: The service to start.

        Returns:
            A handle in the STARTING state.

        Raises:
            StartupFailure: If the service could not be started.
        """
        action = spec.action
        if spec.kind == ServiceKind.PROCESS and isinstance(action, ProcessAction):
            handle = await self._start_process(spec, action)
        elif spec.kind == ServiceKind.CONTAINER and isinstance(
            action, ContainerAction
        ):
            handle = await self._start_container(spec, action)
        else:
            msg = f"Service '{spec.id}' has a {spec.kind} kind but a mismatched action"
            raise StartupFailure(msg, service_id=spec.id)

        await emit_event(
            self._output_sink,
            spec.id,
            ServiceEventType.STARTED,
            runtime_ref=handle.runtime_ref,
            message=_describe(action),
        )
        return handle

    async def _start_process(
        self, spec: ServiceSpec, action: ProcessAction
    ) -> ServiceHandle:
        if not action.command:
            msg = f"Service '{spec.id}' has an empty command"
            raise StartupFailure(msg, service_id=spec.id)

        executable = resolve_executable(action.command[0], action.cwd)
        if executable is None:
            msg = f"Executable not found for '{spec.id}': {action.command[0]}"
            raise StartupFailure(msg, service_id=spec.id)

        env: dict[str, str] | None = None
        if action.env:
            env = {**os.environ, **action.env}

        # Output is inherited when nobody is there to drain the pipes
        pipe = subprocess.PIPE if self.task_group is not None else None
        try:
            # New session: terminal signals reach the supervisor only
            process = await anyio.open_process(
                [executable, *action.command[1:]],
                cwd=action.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=pipe,
                stderr=pipe,
                start_new_session=True,
            )
        except OSError as e:
            msg = f"Failed to spawn '{spec.id}': {e}"
            raise StartupFailure(msg, service_id=spec.id, cause=e) from e

        runtime = ProcessRuntime(process)
        ref = str(runtime.pid)
        if self.task_group is not None:
            self.task_group.start_soon(self._pump_output, spec.id, ref, process)

        self._logger.info("process_spawned", service=spec.id, pid=runtime.pid)
        return ServiceHandle(
            spec_id=spec.id,
            kind=ServiceKind.PROCESS,
            runtime_ref=ref,
            runtime=runtime,
            claims_ports=spec.claims_ports,
        )

    async def _start_container(
        self, spec: ServiceSpec, action: ContainerAction
    ) -> ServiceHandle:
        name = self.container_name(spec.id)
        try:
            engine = self.engine
            if not await engine.image_exists(action.image):
                if not action.pull_missing:
                    msg = f"Image not found for '{spec.id}': {action.image}"
                    raise StartupFailure(msg, service_id=spec.id)
                await engine.pull(action.image)
            container_id = await engine.run_detached(name, action)
        except subprocess.CalledProcessError as e:
            diagnostics = _decode(e.stderr) or _decode(e.stdout)
            _ = await self.engine.remove(name)
            msg = f"Failed to start container for '{spec.id}'"
            raise StartupFailure(
                msg, service_id=spec.id, diagnostics=diagnostics, cause=e
            ) from e
        except (OSError, ConfigurationError) as e:
            msg = f"Container engine unavailable for '{spec.id}': {e}"
            raise StartupFailure(msg, service_id=spec.id, cause=e) from e

        # Distinguish "started" from "crashed immediately"
        await anyio.sleep(self.liveness_delay)
        if not await engine.is_running(name):
            diagnostics = await engine.logs(name)
            _ = await engine.remove(name)
            msg = f"Container '{name}' exited immediately"
            raise StartupFailure(msg, service_id=spec.id, diagnostics=diagnostics)

        self._logger.info(
            "container_started",
            service=spec.id,
            container=name,
            container_id=container_id,
        )
        return ServiceHandle(
            spec_id=spec.id,
            kind=ServiceKind.CONTAINER,
            runtime_ref=name,
            runtime=ContainerRuntime(engine, name, container_id),
            claims_ports=spec.claims_ports,
        )

    async def _stream_output(
        self,
        service_name: str,
        runtime_ref: str,
        stream: AsyncIterable[str],
        stream_name: Literal["stdout", "stderr"],
    ) -> None:
        # A chunk may end mid-line; the tail waits for the next chunk
        pending = ""
        try:
            async for chunk in stream:
                *lines, pending = (pending + chunk).split("\n")
                for line in lines:
                    await self._write_line(
                        service_name, runtime_ref, stream_name, line.rstrip("\r")
                    )
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Stream closed, which is expected on process exit
            pass
        if pending:
            await self._write_line(
                service_name, runtime_ref, stream_name, pending.rstrip("\r")
            )

    async def _write_line(
        self,
        service_name: str,
        runtime_ref: str,
        stream_name: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        try:  # noqa: SIM105
            await self._output_sink.write_line(
                service_name, runtime_ref, stream_name, line
            )
        except Exception:  # noqa: BLE001, S110
            # Output sink errors should not crash streaming
            pass

    async def _pump_output(
        self,
        service_name: str,
        runtime_ref: str,
        process: anyio.abc.Process,
    ) -> None:
        async with anyio.create_task_group() as tg:
            if process.stdout is not None:
                stdout_stream = TextReceiveStream(process.stdout, errors="replace")
                tg.start_soon(
                    self._stream_output,
                    service_name,
                    runtime_ref,
                    stdout_stream,
                    "stdout",
                )
            if process.stderr is not None:
                stderr_stream = TextReceiveStream(process.stderr, errors="replace")
                tg.start_soon(
                    self._stream_output,
                    service_name,
                    runtime_ref,
                    stderr_stream,
                    "stderr",
                )
            _ = await process.wait()


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace").strip()
    return data.strip()


def _describe(action: ProcessAction | ContainerAction) -> str:
    if isinstance(action, ProcessAction):
        return f"command: {' '.join(action.command)}"
    return f"image: {action.image}"
