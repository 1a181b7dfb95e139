from collections.abc import Callable

import pytest
from rich.console import Console

from vepctl.cli import CLIContext, create_app


@pytest.fixture(autouse=True)
def _wide_terminal(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keeps rich from wrapping table cells the assertions look for.
    monkeypatch.setenv("COLUMNS", "200")


@pytest.fixture
def console() -> Console:
    return Console(width=200, no_color=True)


@pytest.fixture
def vepctl_cli(console: Console) -> Callable[..., int]:
    """Run the CLI with global options and return its exit code."""
    app = create_app(console=console, error_console=console)

    def _run(*args: str) -> int:
        try:
            app.meta(list(args))
        except SystemExit as e:
            return e.code if isinstance(e.code, int) else 1
        finally:
            CLIContext.reset()
        return 0

    return _run
