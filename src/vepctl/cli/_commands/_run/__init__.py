# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""Run command: start a pipeline and supervise it until shutdown."""

from pathlib import Path
from typing import Annotated, Any

import anyio
from cyclopts import App, Parameter
from rich.markup import escape

from vepctl.cli._commands._context import CLIContext
from vepctl.cli._commands._shared import ExitCode, exit_with_error
from vepctl.config import LogLevel, load_pipeline
from vepctl.exceptions import ConfigError
from vepctl.supervisor import (
    ConsoleOutputSink,
    LifecycleSupervisor,
    RunResult,
    render_summary,
)
from vepctl.utils import create_logger

app = App(name="run", help="Start a pipeline and supervise it", help_on_error=True)


def _overrides(
    grace_period: float | None, log_level: LogLevel | None
) -> dict[str, Any] | None:
    overrides: dict[str, Any] = {}
    if grace_period is not None:
        overrides["supervisor"] = {"grace_period": grace_period}
    if log_level is not None:
        overrides["logging"] = {"level": log_level.value}
    return overrides or None


def exit_code_for(result: RunResult) -> ExitCode:
    """Map a run result to the process exit code, ignoring teardown warnings."""
    return ExitCode.SUCCESS if result.success else ExitCode.STARTUP_FAILURE


@app.default
def run(
    pipeline: Annotated[Path, Parameter(help="Path to the TOML pipeline file.")],
    *,
    grace_period: Annotated[
        float | None,
        Parameter(help="Seconds services get to stop before being killed."),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        Parameter(help="Log level, overriding the pipeline's [logging] level."),
    ] = None,
) -> None:
    """Start every service of a pipeline and supervise it until shutdown.

    Services start in dependency order. The run ends on SIGINT/SIGTERM, when
    a required service fails to start or exits, or when every service has
    exited; all started services are stopped before the command returns.

    Exit codes: 0 if every required service became ready, 1 otherwise,
    2 if the pipeline is invalid.
    """
    ctx = CLIContext.get_current()
    error_console = ctx.error_console

    try:
        config = load_pipeline(pipeline, overrides=_overrides(grace_period, log_level))
        graph = config.to_graph(pipeline.parent)
        graph.validate()
    except ConfigError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=error_console)

    logger = create_logger(
        level="debug" if ctx.verbose else config.logging.level.value,
        log_format=config.logging.log_format,
        log_file=ctx.log_file if ctx.log_file is not None else config.logging.file,
    )
    console = ctx.console
    supervisor = LifecycleSupervisor(
        config.run_settings(),
        output_sink=ConsoleOutputSink(console),
        logger=logger,
    )

    result = anyio.run(supervisor.run, graph)

    console.print(render_summary(result))
    for warning in result.teardown_warnings:
        error_console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    if result.fatal_error is not None:
        error_console.print(f"[red]Error:[/red] {escape(str(result.fatal_error))}")

    raise SystemExit(exit_code_for(result))
