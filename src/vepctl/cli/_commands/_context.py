# pyright: reportUnusedCallResult=false
"""CLI context for global state management.

The CLIContext is set once by the top-level app from the global options
and made available to every command via contextvars.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from ._shared import get_console, get_error_console

if TYPE_CHECKING:
    from rich.console import Console
    from structlog.typing import FilteringBoundLogger


class OutputFormat(StrEnum):
    """Supported output formats for commands."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


# Thread-safe context variable for CLIContext
_current_cli_context: contextvars.ContextVar[CLIContext | None] = (
    contextvars.ContextVar("cli_context", default=None)
)


@dataclass(frozen=True, slots=True)
class CLIContext:
    """Global CLI options shared by all commands.

    Attributes:
        verbose: Log at debug level regardless of the pipeline's setting.
        no_color: Disable colored output.
        log_file: Log file overriding the pipeline's [logging] file.
        logger: Logger for commands that run before a pipeline is loaded.
    """

    verbose: bool = False
    no_color: bool = False
    log_file: str | None = None
    logger: FilteringBoundLogger | None = field(default=None, repr=False)

    @property
    def console(self) -> Console:
        return get_console(no_color=self.no_color)

    @property
    def error_console(self) -> Console:
        return get_error_console(no_color=self.no_color)

    @classmethod
    def get_current(cls) -> CLIContext:
        """Get the current CLIContext, or a default one if none is set."""
        ctx = _current_cli_context.get()
        if ctx is not None:
            return ctx
        return cls()

    @classmethod
    def set_current(cls, ctx: CLIContext) -> None:
        _current_cli_context.set(ctx)

    @classmethod
    def reset(cls) -> None:
        """Reset to the default context; mainly useful between tests."""
        _current_cli_context.set(None)
