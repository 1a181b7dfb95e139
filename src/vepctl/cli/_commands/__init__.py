"""vepctl CLI commands."""
# pyright: reportUnusedCallResult=false

from __future__ import annotations

from typing import TYPE_CHECKING

from ._check import app as check_app
from ._clean import app as clean_app
from ._context import CLIContext, OutputFormat
from ._run import app as run_app
from ._shared import (
    ExitCode,
    FormattableData,
    exit_with_error,
    format_json,
    format_table,
    format_yaml,
    get_console,
    get_error_console,
)
from ._wait_port import app as wait_port_app

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "CLIContext",
    "ExitCode",
    "FormattableData",
    "OutputFormat",
    "check_app",
    "clean_app",
    "exit_with_error",
    "format_json",
    "format_table",
    "format_yaml",
    "get_console",
    "get_error_console",
    "register_commands",
    "run_app",
    "wait_port_app",
]


def register_commands(app: App) -> None:
    """Register all subcommands with the main app.

    Args:
        app: The main cyclopts App to register commands with.
    """
    app.command(run_app)
    app.command(check_app)
    app.command(clean_app)
    app.command(wait_port_app)
