# pyright: reportUnusedCallResult=false
"""Clean command: remove containers left behind by crashed runs."""

from functools import partial
from typing import Annotated, Literal

import anyio
from cyclopts import App, Parameter

from vepctl.cli._commands._context import CLIContext
from vepctl.cli._commands._shared import ExitCode, exit_with_error
from vepctl.exceptions import ConfigurationError
from vepctl.supervisor import ContainerEngine, clean_stale_containers

app = App(name="clean", help="Remove stale pipeline containers", help_on_error=True)


@app.default
def clean(
    *,
    prefix: Annotated[
        str, Parameter(help="Name prefix of the containers to remove.")
    ] = "vep",
    engine: Annotated[
        Literal["auto", "podman", "docker"],
        Parameter(help="Container engine, or auto to prefer podman."),
    ] = "auto",
) -> None:
    """Remove containers with the pipeline prefix left by dead runs.

    Use this after a run was killed without a chance to tear down.
    Containers of a vepctl run that is still alive are kept.
    """
    ctx = CLIContext.get_current()
    try:
        container_engine = ContainerEngine.detect(engine, logger=ctx.logger)
        removed = anyio.run(
            partial(
                clean_stale_containers,
                container_engine,
                f"{prefix}-",
                logger=ctx.logger,
            )
        )
    except (ConfigurationError, OSError) as e:
        exit_with_error(str(e), ExitCode.ENGINE_ERROR, console=ctx.error_console)

    if not removed:
        print(f"No containers starting with '{prefix}-'")  # noqa: T201
        return
    for name in removed:
        print(f"Removed {name}")  # noqa: T201
