"""Sidecar record models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Card(BaseModel):
    """Persistent record for one task line.

    Attributes:
        id: Stable 8-hex identifier, unique across all boards.
        board_id: Owning board.
        column: Column name, set by the application or by done transitions.
        position: Order within the column.
        title: Display title from the last reconcile.
        raw_line: Cached line text, used to find the line again.
        line_number: Cached 1-based line number.
        is_done: Checkbox state.
        priority: Priority id or None.
        labels: Application-owned labels.
        due_date: Application-owned due date (ISO date string) or None.
        sub_items: Indented lines under the task.
        description: Application-owned free text.
        source_fingerprint: Hash of raw_line.
        seq_id: Per-board monotonically increasing number.
        created_at: Insert time (naive UTC).
        updated_at: Last update time (naive UTC).

    """

    id: str
    board_id: str
    column: str
    position: int = 0
    title: str
    raw_line: str
    line_number: int
    is_done: bool = False
    priority: str | None = None
    labels: list[str] = Field(default_factory=list)
    due_date: str | None = None
    sub_items: list[str] = Field(default_factory=list)
    description: str = ""
    source_fingerprint: str | None = None
    seq_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __repr__(self) -> str:
        return f"Card(id={self.id!r}, board={self.board_id!r}, column={self.column!r})"


class SyncState(BaseModel):
    """Last reconciled content hash for one file path."""

    file_path: str
    file_hash: str
    last_synced: datetime | None = None
