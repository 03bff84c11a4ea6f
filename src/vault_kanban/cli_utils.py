"""Shared helpers for the vault-kanban CLI.

Console output, logging setup, exit codes and config loading used by every
command in ``vault_kanban.cli``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from vault_kanban.core.config import Config, load_config
from vault_kanban.core.exceptions import ConfigError

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_WRITEBACK_FAILED = 3

console = Console()


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route log records through rich.

    Args:
        verbose: Show DEBUG messages.
        quiet: Show only WARNING and above. Ignored when ``verbose`` is set.

    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _error(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")


def _warning(message: str) -> None:
    console.print(f"[yellow]Warning:[/yellow] {escape(message)}")


def _success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def _load_config_or_exit(config_path: str | None) -> Config:
    """Load configuration or exit with EXIT_CONFIG_ERROR."""
    try:
        return load_config(Path(config_path).expanduser() if config_path else None)
    except ConfigError as e:
        _error(f"Config error: {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
