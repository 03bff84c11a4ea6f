"""Store-to-file write-back.

Three narrow operations each rewrite exactly one line of one board file:

- set_done: flip the checkbox mark
- set_priority: replace the priority emoji
- set_column: write the ``kb:col`` hint into the existing marker

All of them find the target line with locate_line(), write atomically only
when the line actually changes, and refresh the card's cached line in the
store. Failures come back as WriteBackResult values; nothing here raises to
the caller.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vault_kanban.board.markers import (
    CHECKBOX_PATTERN,
    TASK_PATTERN,
    marker_id,
    normalize_task_text,
    preview,
    set_column_hint,
    split_eol,
)
from vault_kanban.core.config import BoardConfig, Config
from vault_kanban.core.exceptions import (
    CardNotFoundError,
    LineLocateError,
    MissingMarkerError,
    NotACheckboxError,
    StoreError,
    UnknownPriorityError,
    WriteBackError,
)
from vault_kanban.store.base import CardStore, iter_board_cards
from vault_kanban.store.models import Card

from .atomic import atomic_write_text, read_text_exact
from .guards import BoardLockRegistry, WatchSuppressor

logger = logging.getLogger(__name__)

__all__ = [
    "FUZZY_WINDOW",
    "WriteBackEngine",
    "WriteBackResult",
    "locate_line",
]

# Lines searched above and below the cached line number for unmarked cards
FUZZY_WINDOW = 5

_TASK_PREFIX = re.compile(r"^(\s*- \[[ xX]\]\s)(.*)$", re.DOTALL)
_GAP = r"[ \t]*"

# (board, card, lines) -> (index, new line text)
LineEdit = Callable[[BoardConfig, Card, list[str]], tuple[int, str]]


@dataclass
class WriteBackResult:
    """Outcome of one write-back operation.

    Attributes:
        success: False if the line could not be located or edited.
        changed: True only if the file was rewritten.
        line_number: 1-based line that was (or would have been) edited.
        error: Failure message when success is False.

    """

    success: bool
    changed: bool
    line_number: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape, omitting a null error."""
        data: dict[str, Any] = {
            "success": self.success,
            "changed": self.changed,
            "lineNumber": self.line_number,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def _fuzzy_candidates(index: int, line_count: int) -> list[int]:
    low = max(0, index - FUZZY_WINDOW)
    high = min(line_count, index + FUZZY_WINDOW + 1)
    # Nearest first; equal distance resolves to the earlier line
    return sorted(range(low, high), key=lambda i: (abs(i - index), i))


def locate_line(lines: list[str], card: Card, *, fuzzy: bool) -> int:
    """Find the 0-based index of ``card``'s line in ``lines``.

    Resolution order: the cached line if it carries the card's marker, any
    line carrying the marker, then (``fuzzy`` only) the nearest line within
    FUZZY_WINDOW whose normalised text equals the cached raw line.

    Args:
        lines: File content split on ``\\n``.
        card: Card whose cached ``line_number``/``raw_line`` guide the search.
        fuzzy: Allow the normalised-text fallback for unmarked lines.

    Returns:
        Index into ``lines``.

    Raises:
        MissingMarkerError: No marker found and ``fuzzy`` is False.
        LineLocateError: No marker and no normalised-text match.

    """
    index = card.line_number - 1
    current = lines[index] if 0 <= index < len(lines) else None

    if current is not None and marker_id(current) == card.id:
        return index

    for i, line in enumerate(lines):
        if marker_id(line) == card.id:
            return i

    if not fuzzy:
        raise MissingMarkerError(
            f"No kb:id={card.id} marker in file (expected {preview(card.raw_line)!r}, "
            f"found {preview(current)!r}); reconcile the board first",
            card.line_number,
        )

    target = normalize_task_text(card.raw_line)
    for i in _fuzzy_candidates(index, len(lines)):
        line = lines[i]
        if not TASK_PATTERN.match(line) or marker_id(line) not in (None, card.id):
            continue
        if normalize_task_text(line) == target:
            if i != index:
                logger.debug("Card %s found at line %d instead of %d", card.id, i + 1, index + 1)
            return i

    raise LineLocateError(
        f"Content mismatch at line {card.line_number}: expected {preview(card.raw_line)!r}, "
        f"found {preview(current)!r}",
        card.line_number,
    )


class WriteBackEngine:
    """Applies card edits made in the application back to board files.

    Args:
        store: Sidecar store holding the cards.
        config: Configuration supplying boards and the vault root.
        suppressor: Watch suppressor bracketing every write.
        locks: Per-board locks shared with the reconciler.

    """

    def __init__(
        self,
        store: CardStore,
        config: Config,
        *,
        suppressor: WatchSuppressor | None = None,
        locks: BoardLockRegistry | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.suppressor = suppressor or WatchSuppressor()
        self.locks = locks or BoardLockRegistry()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def set_done(self, card_id: str, is_done: bool) -> WriteBackResult:
        """Tick or untick the card's checkbox."""

        def edit(board: BoardConfig, card: Card, lines: list[str]) -> tuple[int, str]:
            index = locate_line(lines, card, fuzzy=True)
            line = lines[index]
            body, eol = split_eol(line)
            match = CHECKBOX_PATTERN.match(body)
            if not match:
                raise NotACheckboxError(f"Line {index + 1} is not a checkbox", index + 1)
            if (match.group(2).lower() == "x") == is_done:
                return index, line
            mark = "x" if is_done else " "
            return index, f"{match.group(1)}{mark}{match.group(3)}{eol}"

        return self._apply(card_id, edit)

    def set_priority(self, card_id: str, priority: str | None) -> WriteBackResult:
        """Replace the card's priority emoji; None clears it."""

        def edit(board: BoardConfig, card: Card, lines: list[str]) -> tuple[int, str]:
            emoji = None
            if priority is not None:
                definition = board.priority_by_id(priority)
                if definition is None:
                    raise UnknownPriorityError(
                        f"Unknown priority {priority!r} for board {board.id}",
                        card.line_number,
                    )
                emoji = definition.emoji

            index = locate_line(lines, card, fuzzy=False)
            body, eol = split_eol(lines[index])
            match = _TASK_PREFIX.match(body)
            if not match:
                raise NotACheckboxError(f"Line {index + 1} is not a checkbox", index + 1)

            rest = match.group(2)
            glyphs = sorted(board.emojis, key=len, reverse=True)
            if glyphs:
                alternatives = "|".join(re.escape(glyph) for glyph in glyphs)
                cleared = re.sub(f"{_GAP}(?:(?:{alternatives}){_GAP})+", " ", rest)
                if cleared != rest:
                    rest = cleared.strip()
            if emoji is not None:
                rest = f"{emoji} {rest}"
            return index, f"{match.group(1)}{rest}{eol}"

        return self._apply(card_id, edit)

    def set_column(self, card_id: str, column: str) -> WriteBackResult:
        """Record ``column`` in the card's marker."""

        def edit(board: BoardConfig, card: Card, lines: list[str]) -> tuple[int, str]:
            index = locate_line(lines, card, fuzzy=False)
            return index, set_column_hint(lines[index], column)

        return self._apply(card_id, edit)

    def stamp_all_columns(self, board_id: str | None = None) -> int:
        """Write every card's current column into its marker.

        Cards without a marker in the file are skipped; each board file is
        written at most once.

        Args:
            board_id: Restrict the sweep to one board; all boards when None.

        Returns:
            Number of lines that changed.

        """
        boards = self.config.boards
        if board_id is not None:
            boards = [b for b in boards if b.id == board_id]
        return sum(self._stamp_board_columns(board) for board in boards)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _source_path(self, board: BoardConfig) -> Path:
        return board.source_path(self.config.vault_root)

    def _apply(self, card_id: str, edit: LineEdit) -> WriteBackResult:
        try:
            card = self.store.get_card(card_id)
            if card is None:
                raise CardNotFoundError(f"Card not found: {card_id}")
        except (CardNotFoundError, StoreError) as e:
            return WriteBackResult(success=False, changed=False, line_number=0, error=str(e))

        board = self.config.get_board(card.board_id)
        if board is None:
            return WriteBackResult(
                success=False,
                changed=False,
                line_number=card.line_number,
                error=f"Board not configured: {card.board_id}",
            )

        path = self._source_path(board)
        with self.locks.hold(board.id), self.suppressor.suppress(path):
            try:
                return self._apply_locked(path, board, card, edit)
            except WriteBackError as e:
                logger.warning("Write-back for card %s failed: %s", card.id, e)
                return WriteBackResult(
                    success=False,
                    changed=False,
                    line_number=e.line_number or card.line_number,
                    error=str(e),
                )
            except (OSError, UnicodeDecodeError, StoreError) as e:
                logger.error("Write-back for card %s failed on %s: %s", card.id, path, e)
                return WriteBackResult(
                    success=False, changed=False, line_number=card.line_number, error=str(e)
                )

    def _apply_locked(
        self, path: Path, board: BoardConfig, card: Card, edit: LineEdit
    ) -> WriteBackResult:
        lines = read_text_exact(path).split("\n")
        index, new_line = edit(board, card, lines)
        line_number = index + 1

        if new_line == lines[index]:
            if line_number != card.line_number or lines[index] != card.raw_line:
                self.store.update_card_line(card.id, lines[index], line_number)
            return WriteBackResult(success=True, changed=False, line_number=line_number)

        lines[index] = new_line
        atomic_write_text(path, "\n".join(lines))
        self.store.update_card_line(card.id, new_line, line_number)
        logger.debug("Card %s: rewrote line %d of %s", card.id, line_number, path.name)
        return WriteBackResult(success=True, changed=True, line_number=line_number)

    def _stamp_board_columns(self, board: BoardConfig) -> int:
        path = self._source_path(board)
        with self.locks.hold(board.id), self.suppressor.suppress(path):
            try:
                lines = read_text_exact(path).split("\n")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Column stamp skipped for board %s: %s", board.id, e)
                return 0

            patched: list[tuple[str, str, int]] = []
            for card in iter_board_cards(self.store, board.id):
                try:
                    index = locate_line(lines, card, fuzzy=False)
                except MissingMarkerError:
                    continue
                new_line = set_column_hint(lines[index], card.column)
                if new_line != lines[index]:
                    lines[index] = new_line
                    patched.append((card.id, new_line, index + 1))

            if not patched:
                return 0
            try:
                atomic_write_text(path, "\n".join(lines))
            except OSError as e:
                logger.error("Column stamp write failed for %s: %s", path, e)
                return 0
            for card_id, raw_line, line_number in patched:
                self.store.update_card_line(card_id, raw_line, line_number)

        logger.info("Stamped %d column hints into %s", len(patched), path.name)
        return len(patched)
