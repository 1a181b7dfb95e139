"""Protocol definitions for the supervisor system.

This module defines the interfaces that decouple the supervisor core from
output implementations and from the kind of unit being supervised:
- OutputSink: Protocol for consuming service output and events
- ServiceRuntime: Protocol for observing and stopping a started unit
- ServiceLauncher: Protocol for turning a spec into a started unit
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from anyio.abc import TaskGroup

    from ._models import ServiceEvent, ServiceHandle, ServiceSpec


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for consuming service output lines.

    OutputSinks receive output from supervised services and can format,
    store, or display it. The protocol is async to support non-blocking
    I/O operations like writing to files or updating UIs.
    """

    async def write_line(
        self,
        service_name: str,
        runtime_ref: str,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        """Write a line of service output.

        Args:
            service_name: Name of the service that produced the output.
            runtime_ref: Process id or container name of the service.
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        ...

    async def write_event(
        self,
        service_name: str,
        event: ServiceEvent,
    ) -> None:
        """Write a service lifecycle event.

        Args:
            service_name: Name of the service that generated the event.
            event: The lifecycle event to record.
        """
        ...


@runtime_checkable
class ServiceRuntime(Protocol):
    """Protocol for a started process or container.

    The shutdown coordinator only talks to services through this
    interface, so process and container teardown share one code path.
    """

    @property
    def exit_code(self) -> int | None:
        """Return the exit code once known, None otherwise."""
        ...

    async def is_alive(self) -> bool:
        """Return whether the underlying unit is still running."""
        ...

    async def terminate(self) -> None:
        """Request a graceful stop without waiting for it."""
        ...

    async def kill(self) -> None:
        """Force the unit to stop."""
        ...

    async def release(self) -> None:
        """Free resources left behind by a stopped unit."""
        ...


class ServiceLauncher(Protocol):
    """Protocol for starting one service.

    The supervisor sets task_group for the duration of a run so launchers
    can attach background tasks (such as output pumps) to it.
    """

    task_group: TaskGroup | None

    async def start(self, spec: ServiceSpec) -> ServiceHandle:
        """Start the service described by spec.

        Raises:
            StartupFailure: If nothing could be started.
        """
        ...
