"""The command-line interface for vepctl."""

from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console

from vepctl import __version__
from vepctl.utils import create_logger

from ._commands import register_commands
from ._commands._context import CLIContext

_HELP = "Start, supervise and tear down the VEP telemetry pipeline."


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Build the vepctl application with its global options.

    Args:
        console: Console for help and regular output.
        error_console: Console for cyclopts parse errors.
        exit_on_error: Exit on parse errors instead of raising.

    Returns:
        The app; invoke ``app.meta()`` to parse global options first.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="vepctl",
        help=_HELP,
        help_on_error=True,
        version=__version__,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.meta.default
    def _default(  # pyright: ignore[reportUnusedFunction]
        *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
        verbose: Annotated[bool, Parameter(help="Enable debug logging")] = False,
        no_color: Annotated[
            bool, Parameter(name="--no-color", help="Disable colored output")
        ] = False,
        log_file: Annotated[
            str | None, Parameter(name="--log-file", help="Write logs to this file")
        ] = None,
    ) -> None:
        """Run vepctl with global options.

        Args:
            tokens: Command tokens to pass to subcommands.
            verbose: Log at debug level.
            no_color: Disable colored output.
            log_file: Log file, overriding the pipeline's [logging] file.
        """
        ctx = CLIContext(
            verbose=verbose,
            no_color=no_color,
            log_file=log_file,
            logger=create_logger(
                level="debug" if verbose else "warning",
                log_file=log_file or "",
            ),
        )
        CLIContext.set_current(ctx)

        try:
            app(tokens)
        finally:
            CLIContext.reset()

    register_commands(app)
    return app


app = create_app()


def main() -> None:
    """Default entrypoint for the `vepctl` CLI."""
    app.meta()


if __name__ == "__main__":
    main()
