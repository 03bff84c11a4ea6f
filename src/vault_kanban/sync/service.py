"""Application-facing sync facade.

SyncService owns one lock registry and one watch suppressor and hands them to
both the Reconciler and the WriteBackEngine, so every file operation on a
board is serialized and every write is hidden from the watcher. It also adds
the application-level operations (card moves, column renames, drift checks)
and emits change events after successful changes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vault_kanban.board.identity import content_hash, mint_card_id
from vault_kanban.core.config import BoardConfig, Config
from vault_kanban.core.exceptions import ConfigError
from vault_kanban.notifications import ChangeDispatcher, ChangeEventType
from vault_kanban.store.base import CardStore
from vault_kanban.store.models import Card

from .atomic import read_text_exact
from .guards import BoardLockRegistry, WatchSuppressor
from .reconciler import ReconcileResult, Reconciler
from .writeback import WriteBackEngine, WriteBackResult

logger = logging.getLogger(__name__)

__all__ = ["MoveResult", "SyncService"]


@dataclass
class MoveResult:
    """Outcome of moving a card between columns.

    The move itself succeeds whenever the card and column exist; failed
    file write-backs are reported in ``warning`` rather than as an error.
    """

    success: bool
    card: Card | None = None
    warning: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.card is not None:
            data["card"] = self.card.model_dump(mode="json")
        if self.warning is not None:
            data["warning"] = self.warning
        if self.error is not None:
            data["error"] = self.error
        return data


class SyncService:
    """Entry point for every reconcile and write-back in the application.

    Args:
        config: Loaded configuration.
        store: Sidecar card store.
        dispatcher: Change event fan-out; a listener-less one when None.
        minter: Card ID generator passed to the reconciler.

    """

    def __init__(
        self,
        config: Config,
        store: CardStore,
        *,
        dispatcher: ChangeDispatcher | None = None,
        minter: Callable[[], str] = mint_card_id,
    ) -> None:
        self.config = config
        self.store = store
        self.dispatcher = dispatcher or ChangeDispatcher()
        self.locks = BoardLockRegistry()
        self.suppressor = WatchSuppressor()
        self.reconciler = Reconciler(
            store,
            config.vault_root,
            suppressor=self.suppressor,
            locks=self.locks,
            minter=minter,
        )
        self.writeback = WriteBackEngine(
            store, config, suppressor=self.suppressor, locks=self.locks
        )

    def _board(self, board_id: str) -> BoardConfig:
        board = self.config.get_board(board_id)
        if board is None:
            raise ConfigError(f"Unknown board: {board_id}")
        return board

    # -------------------------------------------------------------------------
    # File -> store
    # -------------------------------------------------------------------------

    def reconcile(self, board_id: str, *, force: bool = False) -> ReconcileResult:
        """Reconcile one board and notify listeners if anything changed."""
        try:
            board = self._board(board_id)
        except ConfigError as e:
            logger.error("Reconcile skipped: %s", e)
            return ReconcileResult(board_id=board_id)
        result = self.reconciler.reconcile(board, force=force)
        if result.has_changes:
            self.dispatcher.emit(ChangeEventType.BOARD_RECONCILED, board.id)
        return result

    def reconcile_all(self, *, force: bool = False) -> list[ReconcileResult]:
        """Reconcile every configured board."""
        return [self.reconcile(board.id, force=force) for board in self.config.boards]

    def board_for_path(self, path: Path | str) -> BoardConfig | None:
        """Return the board whose source file is ``path``, if any."""
        target = Path(path).resolve()
        for board in self.config.boards:
            if board.source_path(self.config.vault_root).resolve() == target:
                return board
        return None

    def on_file_changed(self, path: Path | str) -> ReconcileResult | None:
        """Watcher callback: reconcile the board at ``path`` unless we wrote it.

        Returns:
            The reconcile result, or None if the change was our own write or
            the path is not a board file.

        """
        if self.suppressor.is_suppressed(path):
            logger.debug("Ignoring self-inflicted change to %s", path)
            return None
        board = self.board_for_path(path)
        if board is None:
            return None
        return self.reconcile(board.id)

    def check_drift(self, board_id: str) -> bool:
        """Return True if the board file changed since the last reconcile.

        An unreadable file or a board never reconciled also counts as drift.

        Raises:
            ConfigError: If ``board_id`` is not configured.

        """
        board = self._board(board_id)
        path = board.source_path(self.config.vault_root)
        try:
            current = content_hash(read_text_exact(path))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Drift check cannot read %s: %s", path, e)
            return True
        state = self.store.get_sync_state(str(path))
        return state is None or state.file_hash != current

    # -------------------------------------------------------------------------
    # Store -> file
    # -------------------------------------------------------------------------

    def _notify_card(self, card_id: str, result: WriteBackResult) -> WriteBackResult:
        if result.changed:
            card = self.store.get_card(card_id)
            if card is not None:
                self.dispatcher.emit(ChangeEventType.CARD_UPDATED, card.board_id, card.id)
        return result

    def set_done(self, card_id: str, is_done: bool) -> WriteBackResult:
        """Write the card's done state into its checkbox."""
        return self._notify_card(card_id, self.writeback.set_done(card_id, is_done))

    def set_priority(self, card_id: str, priority: str | None) -> WriteBackResult:
        """Write the card's priority emoji into its line."""
        return self._notify_card(card_id, self.writeback.set_priority(card_id, priority))

    def set_column(self, card_id: str, column: str) -> WriteBackResult:
        """Write the card's column hint into its marker."""
        return self._notify_card(card_id, self.writeback.set_column(card_id, column))

    def stamp_all_columns(self, board_id: str | None = None) -> int:
        """Write every card's column into its marker; returns lines changed."""
        boards = self.config.boards if board_id is None else [self._board(board_id)]
        total = 0
        for board in boards:
            count = self.writeback.stamp_all_columns(board.id)
            if count:
                self.dispatcher.emit(ChangeEventType.COLUMNS_STAMPED, board.id)
            total += count
        return total

    # -------------------------------------------------------------------------
    # Application operations
    # -------------------------------------------------------------------------

    def move_card(self, card_id: str, column: str) -> MoveResult:
        """Move a card to the end of ``column``.

        Crossing into or out of a done column flips the card's done state and
        writes the checkbox. The column hint is written to the marker.

        """
        card = self.store.get_card(card_id)
        if card is None:
            return MoveResult(success=False, error=f"Card not found: {card_id}")
        board = self.config.get_board(card.board_id)
        if board is None:
            return MoveResult(success=False, error=f"Board not configured: {card.board_id}")
        if column not in board.columns:
            return MoveResult(
                success=False, error=f"Unknown column {column!r} for board {board.id}"
            )
        if column == card.column:
            return MoveResult(success=True, card=card)

        into_done = board.is_done_column(column)
        flip_done = into_done != board.is_done_column(card.column) and card.is_done != into_done
        warnings: list[str] = []

        with self.locks.hold(board.id):
            updates: dict[str, Any] = {
                "column": column,
                "position": self.store.next_position(board.id, column),
            }
            if flip_done:
                updates["is_done"] = into_done
            self.store.update_card(card.model_copy(update=updates))

            if flip_done:
                done_result = self.writeback.set_done(card.id, into_done)
                if not done_result.success:
                    warnings.append(f"checkbox not updated: {done_result.error}")
            column_result = self.writeback.set_column(card.id, column)
            if not column_result.success:
                warnings.append(f"column hint not updated: {column_result.error}")

        self.dispatcher.emit(ChangeEventType.CARD_MOVED, board.id, card.id)
        return MoveResult(
            success=True,
            card=self.store.get_card(card.id),
            warning="; ".join(warnings) or None,
        )

    def rename_column(self, board_id: str, old: str, new: str) -> int:
        """Move every card in column ``old`` to ``new`` and re-stamp their hints.

        Persisting the renamed column in the configuration is left to the
        caller.

        Returns:
            Number of cards moved.

        Raises:
            ConfigError: If ``board_id`` is not configured.

        """
        board = self._board(board_id)
        affected = [card for card in self.store.list_cards(board.id) if card.column == old]
        if not affected:
            return 0

        with self.locks.hold(board.id):
            with self.store.transaction():
                for card in affected:
                    self.store.update_card(card.model_copy(update={"column": new}))
            for card in affected:
                result = self.writeback.set_column(card.id, new)
                if not result.success:
                    logger.warning("Column hint for card %s not updated: %s", card.id, result.error)

        logger.info("Renamed column %r to %r on board %s (%d cards)", old, new, board.id, len(affected))
        self.dispatcher.emit(ChangeEventType.BOARD_RECONCILED, board.id)
        return len(affected)
