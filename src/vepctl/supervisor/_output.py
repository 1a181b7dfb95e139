"""Output sink implementations for the supervisor system.

This module provides the console implementation of the OutputSink
protocol, the event emission helper shared by the supervisor components,
and the end-of-run summary table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, final

from rich.console import Console
from rich.style import Style
from rich.table import Table
from rich.text import Text

from ._models import ServiceEvent, ServiceEventType, ServiceState, get_timestamp

if TYPE_CHECKING:
    from ._models import RunResult
    from ._protocol import OutputSink


async def emit_event(
    sink: OutputSink,
    service_name: str,
    event_type: ServiceEventType,
    *,
    runtime_ref: str | None = None,
    exit_code: int | None = None,
    message: str | None = None,
) -> None:
    """Emit a service lifecycle event to an output sink.

    Args:
        sink: Destination sink.
        service_name: Service the event is about.
        event_type: Type of event to emit.
        runtime_ref: Process id or container name.
        exit_code: Exit code if the service terminated.
        message: Optional message for the event.
    """
    event = ServiceEvent(
        service_name=service_name,
        event_type=event_type,
        timestamp=get_timestamp(),
        runtime_ref=runtime_ref,
        exit_code=exit_code,
        message=message,
    )
    try:  # noqa: SIM105
        await sink.write_event(service_name, event)
    except Exception:  # noqa: BLE001, S110
        # Output sink errors should not crash the supervisor
        pass


@final
class ConsoleOutputSink:
    """Output sink that writes to the console with formatted prefixes.

    Formats service output as `[name:ref] line` with color coding:
    - stdout: Default styling
    - stderr: Dim red styling
    - Events: Special formatting based on event type
    """

    __slots__ = ("_console", "_event_styles", "_stderr_style", "_stdout_style")

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the output sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
        """
        self._console = console or Console()
        self._stdout_style = Style()
        self._stderr_style = Style(color="red", dim=True)
        self._event_styles: dict[ServiceEventType, Style] = {
            ServiceEventType.STARTED: Style(color="green"),
            ServiceEventType.READY: Style(color="green", bold=True),
            ServiceEventType.FAILED: Style(color="red", bold=True),
            ServiceEventType.EXITED: Style(color="red"),
            ServiceEventType.STOPPING: Style(color="yellow", dim=True),
            ServiceEventType.STOPPED: Style(color="yellow"),
            ServiceEventType.KILLED: Style(color="magenta", bold=True),
        }

    @property
    def console(self) -> Console:
        return self._console

    async def write_line(
        self,
        service_name: str,
        runtime_ref: str,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        """Write a line of service output with prefix.

        Args:
            service_name: Name of the service that produced the output.
            runtime_ref: Process id or container name of the service.
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        prefix = f"[{service_name}:{runtime_ref}]"
        style = self._stderr_style if stream == "stderr" else self._stdout_style

        text = Text()
        _ = text.append(prefix, style=Style(color="blue", bold=True))
        _ = text.append(" ")
        _ = text.append(line, style=style)

        self._console.print(text)

    async def write_event(
        self,
        service_name: str,
        event: ServiceEvent,
    ) -> None:
        """Write a service lifecycle event with special formatting.

        Args:
            service_name: Name of the service that generated the event.
            event: The lifecycle event to record.
        """
        style = self._event_styles.get(event.event_type, Style())

        text = Text()
        _ = text.append(f"[{service_name}]", style=Style(color="blue", bold=True))
        _ = text.append(" ")
        _ = text.append(event.event_type.value.upper(), style=style)

        if event.runtime_ref is not None:
            _ = text.append(f" ({event.runtime_ref})", style=Style(dim=True))

        if event.exit_code is not None:
            _ = text.append(f" exit_code={event.exit_code}", style=Style(dim=True))

        if event.message:
            _ = text.append(f" - {event.message}", style=style)

        self._console.print(text)


_STATE_STYLES: dict[ServiceState | None, str] = {
    ServiceState.READY: "green",
    ServiceState.STOPPED: "yellow",
    ServiceState.FAILED: "red",
    None: "dim",
}


def render_summary(result: RunResult) -> Table:
    """Build a table summarizing a run, one row per service."""
    table = Table(title="Run summary", title_justify="left")
    table.add_column("Service", style="bold")
    table.add_column("Required")
    table.add_column("Launched")
    table.add_column("Final state")
    table.add_column("Details")

    for outcome in result.outcomes:
        state_label = outcome.state.value if outcome.state is not None else "not started"
        details = outcome.error or ""
        if outcome.exited_unexpectedly:
            details = "exited unexpectedly" + (f"; {details}" if details else "")
        table.add_row(
            outcome.spec_id,
            "yes" if outcome.required else "no",
            "yes" if outcome.launched else "no",
            Text(state_label, style=_STATE_STYLES.get(outcome.state, "")),
            Text(details),
        )

    return table
