"""Command-line interface for vepctl."""

from ._app import app, create_app, main
from ._commands import CLIContext

__all__ = ["CLIContext", "app", "create_app", "main"]
