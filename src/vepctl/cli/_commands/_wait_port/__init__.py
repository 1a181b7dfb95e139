# pyright: reportUnusedCallResult=false
"""Wait-port command: bounded wait for a TCP port to become free."""

from typing import Annotated

import anyio
from cyclopts import App, Parameter

from vepctl.cli._commands._context import CLIContext
from vepctl.cli._commands._shared import ExitCode, exit_with_error
from vepctl.exceptions import PortConflict
from vepctl.supervisor import PortGuard

app = App(
    name="wait-port", help="Wait for a TCP port to become free", help_on_error=True
)


@app.default
def wait_port(
    port: Annotated[int, Parameter(help="TCP port to wait for.")],
    *,
    host: Annotated[str, Parameter(help="Address the port is checked on.")] = (
        "127.0.0.1"
    ),
    attempts: Annotated[
        int, Parameter(help="Checks allowed to find the port bound.")
    ] = 10,
    interval: Annotated[float, Parameter(help="Seconds between checks.")] = 1.0,
) -> None:
    """Wait until nothing holds PORT, for use from launch scripts.

    Exits 0 once the port is free and 3 if it is still bound after the
    given number of checks.
    """
    ctx = CLIContext.get_current()
    guard = PortGuard(host=host, logger=ctx.logger)

    async def wait() -> None:
        await guard.wait_free(port, max_attempts=attempts, interval=interval)

    try:
        anyio.run(wait)
    except PortConflict as e:
        exit_with_error(str(e), ExitCode.PORT_CONFLICT, console=ctx.error_console)
    print(f"Port {port} is free")  # noqa: T201
