"""vault-kanban command line interface.

Examples:
    vault-kanban reconcile                  # reconcile every board
    vault-kanban reconcile -b work --force  # bypass the bulk-delete guard
    vault-kanban done ab12cd34              # tick a card's checkbox
    vault-kanban priority ab12cd34 urgent   # set the priority emoji
    vault-kanban move ab12cd34 "In Progress"
    vault-kanban status

"""

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.table import Table

from vault_kanban import __version__
from vault_kanban.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_WRITEBACK_FAILED,
    _error,
    _load_config_or_exit,
    _setup_logging,
    _success,
    _warning,
    console,
)
from vault_kanban.core.exceptions import ConfigError, StoreError
from vault_kanban.store import SqliteCardStore, backup_database
from vault_kanban.sync import SyncService, WriteBackResult

app = typer.Typer(
    name="vault-kanban",
    help="Keep markdown task lists and a kanban card store in sync",
    no_args_is_help=True,
)

_CONFIG_HELP = "Path to config.yaml (default: ~/.vault-kanban/config.yaml)"


@contextmanager
def _service(config_path: str | None) -> Iterator[SyncService]:
    config = _load_config_or_exit(config_path)
    try:
        store = SqliteCardStore(config.database_path)
    except StoreError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_ERROR) from None
    try:
        yield SyncService(config, store)
    finally:
        store.close()


def _report_writeback(result: WriteBackResult, card_id: str) -> None:
    if not result.success:
        _error(f"Card {card_id}: {result.error}")
        raise typer.Exit(code=EXIT_WRITEBACK_FAILED)
    if result.changed:
        _success(f"Card {card_id}: line {result.line_number} updated")
    else:
        console.print(f"Card {card_id}: line {result.line_number} already up to date")


@app.command("version")
def version_command() -> None:
    """Show the installed version."""
    console.print(f"vault-kanban {__version__}")


@app.command("reconcile")
def reconcile_command(
    board: str | None = typer.Option(None, "--board", "-b", help="Only this board"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Ignore the recorded hash and allow large deletions",
    ),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
) -> None:
    """Reconcile board files into the card store.

    New task lines get an identity marker written into the file.
    """
    _setup_logging(verbose=verbose, quiet=quiet)
    with _service(config) as service:
        if board is not None:
            if service.config.get_board(board) is None:
                _error(f"Unknown board: {board}")
                raise typer.Exit(code=EXIT_CONFIG_ERROR)
            results = [service.reconcile(board, force=force)]
        else:
            results = service.reconcile_all(force=force)

    table = Table(title="Reconcile")
    for column in ("Board", "Added", "Updated", "Removed", "Migrated"):
        table.add_column(column, justify="left" if column == "Board" else "right")
    for result in results:
        table.add_row(
            result.board_id,
            str(result.added),
            str(result.updated),
            str(result.removed),
            str(result.migrated),
        )
    if not quiet:
        console.print(table)


@app.command("done")
def done_command(
    card_id: str = typer.Argument(..., help="Card ID"),
    undo: bool = typer.Option(False, "--undo", "-u", help="Untick instead of tick"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Tick (or untick) a card's checkbox in its board file."""
    _setup_logging(verbose=verbose, quiet=not verbose)
    with _service(config) as service:
        result = service.set_done(card_id, not undo)
    _report_writeback(result, card_id)


@app.command("priority")
def priority_command(
    card_id: str = typer.Argument(..., help="Card ID"),
    priority: str | None = typer.Argument(None, help="Priority id, e.g. 'urgent'"),
    clear: bool = typer.Option(False, "--clear", help="Remove the priority emoji"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Set or clear a card's priority emoji."""
    _setup_logging(verbose=verbose, quiet=not verbose)
    if clear == (priority is not None):
        _error("Pass either a PRIORITY or --clear")
        raise typer.Exit(code=EXIT_ERROR)
    with _service(config) as service:
        result = service.set_priority(card_id, None if clear else priority)
    _report_writeback(result, card_id)


@app.command("column")
def column_command(
    card_id: str = typer.Argument(..., help="Card ID"),
    column: str = typer.Argument(..., help="Column name to record in the marker"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Write a column hint into a card's marker without moving it."""
    _setup_logging(verbose=verbose, quiet=not verbose)
    with _service(config) as service:
        result = service.set_column(card_id, column)
    _report_writeback(result, card_id)


@app.command("move")
def move_command(
    card_id: str = typer.Argument(..., help="Card ID"),
    column: str = typer.Argument(..., help="Target column"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Move a card to another column, updating its checkbox when needed."""
    _setup_logging(verbose=verbose, quiet=not verbose)
    with _service(config) as service:
        result = service.move_card(card_id, column)
    if not result.success:
        _error(result.error or "move failed")
        raise typer.Exit(code=EXIT_ERROR)
    if result.warning:
        _warning(result.warning)
    _success(f"Card {card_id} moved to {column}")


@app.command("rename-column")
def rename_column_command(
    board: str = typer.Argument(..., help="Board ID"),
    old: str = typer.Argument(..., help="Current column name"),
    new: str = typer.Argument(..., help="New column name"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Move all cards from one column name to another.

    Update the board's ``columns`` list in config.yaml to match afterwards.
    """
    _setup_logging(verbose=verbose, quiet=not verbose)
    with _service(config) as service:
        try:
            count = service.rename_column(board, old, new)
        except ConfigError as e:
            _error(str(e))
            raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
    _success(f"{count} cards moved from {old!r} to {new!r}")


@app.command("stamp-columns")
def stamp_columns_command(
    board: str | None = typer.Option(None, "--board", "-b", help="Only this board"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Write every card's column into its marker (kb:col=)."""
    _setup_logging(verbose=verbose, quiet=not verbose)
    with _service(config) as service:
        try:
            count = service.stamp_all_columns(board)
        except ConfigError as e:
            _error(str(e))
            raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
    _success(f"{count} column hints written")


@app.command("status")
def status_command(
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Show configured boards, card counts and whether files changed since last sync."""
    _setup_logging(quiet=True)
    with _service(config) as service:
        table = Table(title=f"Vault: {service.config.vault_root}")
        table.add_column("Board")
        table.add_column("File")
        table.add_column("Cards", justify="right")
        table.add_column("Sync")
        for board in service.config.boards:
            cards = service.store.list_cards(board.id)
            drift = service.check_drift(board.id)
            table.add_row(
                board.id,
                board.file,
                str(len(cards)),
                "[yellow]changed[/yellow]" if drift else "[green]in sync[/green]",
            )
    console.print(table)


@app.command("backup")
def backup_command(
    keep: int = typer.Option(3, "--keep", "-k", min=1, help="Backups to retain"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Back up the card store next to the database file."""
    _setup_logging(quiet=True)
    with _service(config) as service:
        store = service.store
        try:
            dest = backup_database(store, service.config.database_path.parent, keep=keep)
        except StoreError as e:
            _error(str(e))
            raise typer.Exit(code=EXIT_ERROR) from None
    _success(f"Backup written to {dest}")


if __name__ == "__main__":
    app()
