"""File-to-store reconciliation.

One reconcile pass makes the sidecar store agree with a board's markdown
file:

1. Hash the file text and stop early if it matches the recorded sync state.
2. Resolve a stable ID for every parsed task (marker, legacy fingerprint, or
   a freshly minted ID), repairing duplicate and cross-board marker IDs.
3. Upsert card records inside a store transaction, preserving application
   owned columns except across done/undone transitions.
4. Delete cards whose lines vanished, unless a bulk-deletion guard trips.
5. Stamp new or repaired markers back into the file with an atomic write.

The pass never raises to its caller: read, store and stamp failures are
logged and reflected in the returned counts.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vault_kanban.board.identity import (
    allocate_unique_id,
    compute_fingerprint,
    content_hash,
    is_valid_card_id,
    line_fingerprint,
    mint_card_id,
)
from vault_kanban.board.markers import inject_card_id, normalize_title, preview
from vault_kanban.board.parser import ParsedTask, parse_tasks
from vault_kanban.core.config import BoardConfig
from vault_kanban.core.exceptions import (
    BoardReadError,
    SafetyAbort,
    StampWriteError,
    StoreError,
)
from vault_kanban.store.base import CardStore
from vault_kanban.store.models import Card

from .atomic import atomic_write_text, read_text_exact
from .guards import BoardLockRegistry, WatchSuppressor

logger = logging.getLogger(__name__)

__all__ = [
    "BULK_DELETE_MIN_CARDS",
    "BULK_DELETE_RATIO",
    "ReconcileResult",
    "Reconciler",
]

# Refuse to delete this share of a board's cards in one pass...
BULK_DELETE_RATIO = 0.8
# ...once the board holds at least this many
BULK_DELETE_MIN_CARDS = 5


@dataclass
class ReconcileResult:
    """Counts produced by one reconcile pass.

    Attributes:
        board_id: Board that was reconciled.
        added: New cards inserted.
        updated: Existing cards whose fields changed.
        removed: Cards deleted because their lines vanished.
        migrated: Unmarked lines matched to existing cards by fingerprint.

    """

    board_id: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    migrated: int = 0

    @property
    def has_changes(self) -> bool:
        """True if any card was added, updated or removed."""
        return bool(self.added or self.updated or self.removed)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape."""
        return {
            "boardId": self.board_id,
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "migrated": self.migrated,
        }


@dataclass
class _Stamp:
    """A line that needs its marker written or repaired."""

    index: int
    old_line: str
    new_line: str
    card_id: str


@dataclass
class _Resolution:
    card_id: str
    needs_stamp: bool
    migrated: bool = False


class Reconciler:
    """Synchronizes board files into a card store.

    Args:
        store: Sidecar store receiving card records.
        vault_root: Directory board file paths are relative to.
        suppressor: Watch suppressor bracketing marker-stamp writes.
        locks: Per-board locks shared with the write-back engine.
        minter: Card ID generator (injectable for tests).

    """

    def __init__(
        self,
        store: CardStore,
        vault_root: Path,
        *,
        suppressor: WatchSuppressor | None = None,
        locks: BoardLockRegistry | None = None,
        minter: Callable[[], str] = mint_card_id,
    ) -> None:
        self.store = store
        self.vault_root = vault_root
        self.suppressor = suppressor or WatchSuppressor()
        self.locks = locks or BoardLockRegistry()
        self._minter = minter

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        board: BoardConfig,
        content: str | None = None,
        *,
        force: bool = False,
    ) -> ReconcileResult:
        """Run one reconcile pass for ``board``.

        Args:
            board: Board to reconcile.
            content: File text already in hand; read from disk when None.
            force: Skip the unchanged-hash short-circuit and the bulk-deletion
                ratio guard. The empty-file guard still applies.

        Returns:
            Counts for the pass. All zero when the file is unchanged,
            unreadable, or the store failed.

        """
        path = board.source_path(self.vault_root)
        with self.locks.hold(board.id):
            if content is None:
                try:
                    content = self._read_board(path)
                except BoardReadError as e:
                    logger.error("Reconcile skipped for board %s: %s", board.id, e)
                    return ReconcileResult(board_id=board.id)
            try:
                return self._reconcile(board, path, content, force=force)
            except StoreError as e:
                logger.error("Reconcile of board %s failed: %s", board.id, e)
                return ReconcileResult(board_id=board.id)

    def reconcile_all(
        self, boards: Iterable[BoardConfig], *, force: bool = False
    ) -> list[ReconcileResult]:
        """Reconcile each board in turn; one board's failure does not stop the rest."""
        return [self.reconcile(board, force=force) for board in boards]

    # -------------------------------------------------------------------------
    # Pass implementation
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_board(path: Path) -> str:
        try:
            return read_text_exact(path)
        except FileNotFoundError as e:
            raise BoardReadError(f"Board file not found: {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise BoardReadError(f"Cannot read board file {path}: {e}") from e

    def _reconcile(
        self, board: BoardConfig, path: Path, content: str, *, force: bool
    ) -> ReconcileResult:
        result = ReconcileResult(board_id=board.id)
        state_key = str(path)
        file_hash = content_hash(content)

        state = self.store.get_sync_state(state_key)
        if not force and state is not None and state.file_hash == file_hash:
            logger.debug("Board %s unchanged since last sync", board.id)
            return result

        tasks = parse_tasks(content, board.priorities)
        existing = self.store.list_cards(board.id)
        existing_by_id = {card.id: card for card in existing}
        known_ids = self.store.all_card_ids()
        claimed: set[str] = set()
        title_counts: Counter[str] = Counter()
        stamps: list[_Stamp] = []
        next_seq = self.store.max_seq_id(board.id)

        with self.store.transaction():
            for task in tasks:
                resolution = self._resolve_identity(
                    task, board, existing_by_id, known_ids, claimed, title_counts
                )
                card_id = resolution.card_id
                claimed.add(card_id)
                known_ids.add(card_id)

                raw_line = task.raw_line
                if resolution.needs_stamp:
                    raw_line = inject_card_id(task.raw_line, card_id)
                    stamps.append(
                        _Stamp(
                            index=task.line_number - 1,
                            old_line=task.raw_line,
                            new_line=raw_line,
                            card_id=card_id,
                        )
                    )
                if resolution.migrated:
                    result.migrated += 1

                current = existing_by_id.get(card_id)
                if current is not None:
                    if self._update_card(board, current, task, raw_line):
                        result.updated += 1
                else:
                    next_seq += 1
                    self._insert_card(board, card_id, task, raw_line, next_seq)
                    result.added += 1

            result.removed = self._remove_vanished(
                board, existing, claimed, len(tasks), force=force
            )

        if stamps:
            try:
                self._write_stamps(board, path, content, file_hash, stamps)
            except StampWriteError as e:
                # Sync state stays stale so the next pass retries the stamps
                logger.error("Marker stamping failed for board %s: %s", board.id, e)
        else:
            self.store.set_sync_state(state_key, file_hash)

        logger.info(
            "Reconciled board %s: added=%d updated=%d removed=%d migrated=%d",
            board.id,
            result.added,
            result.updated,
            result.removed,
            result.migrated,
        )
        return result

    def _mint(self, known_ids: set[str], claimed: set[str]) -> str:
        return allocate_unique_id(
            lambda candidate: candidate in claimed or candidate in known_ids,
            minter=self._minter,
        )

    def _resolve_identity(
        self,
        task: ParsedTask,
        board: BoardConfig,
        existing_by_id: dict[str, Card],
        known_ids: set[str],
        claimed: set[str],
        title_counts: Counter[str],
    ) -> _Resolution:
        if task.card_id is not None:
            if not is_valid_card_id(task.card_id):
                logger.warning(
                    "Malformed marker %s on line %d, assigning a new ID",
                    task.card_id,
                    task.line_number,
                )
                return _Resolution(self._mint(known_ids, claimed), needs_stamp=True)
            if task.card_id in claimed:
                logger.warning(
                    "Duplicate marker %s on line %d, assigning a new ID",
                    task.card_id,
                    task.line_number,
                )
                return _Resolution(self._mint(known_ids, claimed), needs_stamp=True)
            if task.card_id in known_ids and task.card_id not in existing_by_id:
                other = self.store.get_card(task.card_id)
                if other is not None and other.board_id != board.id:
                    logger.warning(
                        "Marker %s on line %d belongs to board %s, assigning a new ID",
                        task.card_id,
                        task.line_number,
                        other.board_id,
                    )
                    return _Resolution(self._mint(known_ids, claimed), needs_stamp=True)
            return _Resolution(task.card_id, needs_stamp=False)

        normalized = normalize_title(task.title)
        occurrence = title_counts[normalized]
        title_counts[normalized] += 1
        legacy_id = compute_fingerprint(task.title, board.id, occurrence)
        if legacy_id in existing_by_id and legacy_id not in claimed:
            logger.debug("Line %d matched legacy card %s", task.line_number, legacy_id)
            return _Resolution(legacy_id, needs_stamp=True, migrated=True)
        return _Resolution(self._mint(known_ids, claimed), needs_stamp=True)

    def _update_card(
        self, board: BoardConfig, current: Card, task: ParsedTask, raw_line: str
    ) -> bool:
        updates: dict[str, Any] = {
            "title": task.title,
            "raw_line": raw_line,
            "line_number": task.line_number,
            "is_done": task.is_done,
            "priority": task.priority,
            "sub_items": list(task.sub_items),
            "source_fingerprint": line_fingerprint(raw_line),
        }

        column = current.column
        if task.is_done and not current.is_done and not board.is_done_column(column):
            column = board.done_column
        elif not task.is_done and current.is_done and board.is_done_column(column):
            column = board.backlog_column
        if column != current.column:
            updates["column"] = column
            updates["position"] = self.store.next_position(board.id, column)

        updated = current.model_copy(update=updates)
        if updated == current:
            return False
        self.store.update_card(updated)
        return True

    def _insert_card(
        self, board: BoardConfig, card_id: str, task: ParsedTask, raw_line: str, seq_id: int
    ) -> None:
        if task.column_hint and task.column_hint in board.columns:
            column = task.column_hint
        elif task.is_done:
            column = board.done_column
        else:
            column = board.backlog_column

        self.store.insert_card(
            Card(
                id=card_id,
                board_id=board.id,
                column=column,
                position=self.store.next_position(board.id, column),
                title=task.title,
                raw_line=raw_line,
                line_number=task.line_number,
                is_done=task.is_done,
                priority=task.priority,
                sub_items=list(task.sub_items),
                source_fingerprint=line_fingerprint(raw_line),
                seq_id=seq_id,
            )
        )

    # -------------------------------------------------------------------------
    # Deletion guards
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_bulk_delete(
        board_id: str,
        candidates: list[str],
        existing_count: int,
        task_count: int,
        *,
        force: bool,
    ) -> None:
        """Raise SafetyAbort if deleting ``candidates`` looks unintended."""
        if len(candidates) == existing_count and task_count == 0:
            raise SafetyAbort(
                f"board {board_id}: file parsed to zero tasks but {existing_count} "
                "cards exist; treating as a truncated read"
            )
        if (
            not force
            and existing_count >= BULK_DELETE_MIN_CARDS
            and len(candidates) >= existing_count * BULK_DELETE_RATIO
        ):
            raise SafetyAbort(
                f"board {board_id}: refusing to delete {len(candidates)} of "
                f"{existing_count} cards; run a forced reconcile if intended"
            )

    def _remove_vanished(
        self,
        board: BoardConfig,
        existing: list[Card],
        claimed: set[str],
        task_count: int,
        *,
        force: bool,
    ) -> int:
        candidates = [card.id for card in existing if card.id not in claimed]
        if not candidates:
            return 0
        try:
            self._check_bulk_delete(
                board.id, candidates, len(existing), task_count, force=force
            )
        except SafetyAbort as e:
            logger.error("SAFETY: %s", e)
            return 0
        logger.debug("Removing %d vanished cards from board %s", len(candidates), board.id)
        return self.store.delete_cards(candidates)

    # -------------------------------------------------------------------------
    # Marker stamping
    # -------------------------------------------------------------------------

    def _write_stamps(
        self,
        board: BoardConfig,
        path: Path,
        parsed_content: str,
        parsed_hash: str,
        stamps: list[_Stamp],
    ) -> None:
        """Patch stamped lines into a fresh read of the file.

        Raises:
            StampWriteError: If the file cannot be re-read or written.

        """
        state_key = str(path)
        with self.suppressor.suppress(path):
            try:
                fresh = read_text_exact(path)
            except (OSError, UnicodeDecodeError) as e:
                raise StampWriteError(f"cannot re-read {path}: {e}") from e

            lines = fresh.split("\n")
            moved: list[tuple[str, str, int]] = []
            patched = 0
            for stamp in stamps:
                target = self._find_stamp_target(lines, stamp)
                if target is None:
                    logger.warning(
                        "Board %s: line %d changed before its marker could be written, "
                        "skipping %r",
                        board.id,
                        stamp.index + 1,
                        preview(stamp.old_line),
                    )
                    continue
                lines[target] = stamp.new_line
                patched += 1
                if target != stamp.index:
                    moved.append((stamp.card_id, stamp.new_line, target + 1))

            if patched == 0:
                self.store.set_sync_state(state_key, parsed_hash)
                return

            new_content = "\n".join(lines)
            try:
                atomic_write_text(path, new_content)
            except OSError as e:
                raise StampWriteError(f"cannot write {path}: {e}") from e

        for card_id, raw_line, line_number in moved:
            self.store.update_card_line(card_id, raw_line, line_number)

        if fresh == parsed_content:
            self.store.set_sync_state(state_key, content_hash(new_content))
        else:
            # Edits made while we parsed are not in the store yet
            logger.debug("Board %s changed during reconcile, leaving sync state stale", board.id)
            self.store.set_sync_state(state_key, parsed_hash)
        logger.info("Stamped %d markers into %s", patched, path.name)

    @staticmethod
    def _find_stamp_target(lines: list[str], stamp: _Stamp) -> int | None:
        if 0 <= stamp.index < len(lines) and lines[stamp.index] == stamp.old_line:
            return stamp.index
        try:
            return lines.index(stamp.old_line)
        except ValueError:
            return None
