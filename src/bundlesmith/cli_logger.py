"""CLI output utilities for consistent messaging.

Messages go to stderr so that a bundle written to stdout stays parseable.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

_console = Console(stderr=True)


def success(message: str) -> None:
    """Print a success message with green checkmark."""
    _console.print(f"[green]✓[/green] {message}")


def error(message: str) -> None:
    """Print an error message with red X."""
    _console.print(f"[red]✗[/red] {escape(message)}", highlight=False, soft_wrap=True)


def warning(message: str) -> None:
    """Print a warning message with yellow exclamation."""
    _console.print(f"[yellow]![/yellow] {message}")


def info(message: str) -> None:
    """Print an info message (no prefix)."""
    _console.print(message)


def dim(message: str) -> None:
    """Print a dimmed message (for secondary info)."""
    _console.print(f"[dim]{message}[/dim]")


def configure_logging(verbose: bool) -> None:
    """Route library log records through rich.

    Debug records from the resolver are shown only when verbose is set.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_console, show_path=False)],
        force=True,
    )
