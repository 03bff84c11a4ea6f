"""Sidecar store interface consumed by the sync engine."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager
from typing import Protocol

from .models import Card, SyncState


class CardStore(Protocol):
    """Protocol for the card record set plus per-file sync state.

    The Reconciler and Write-Back Engine receive a store explicitly; any
    object implementing these methods works (the SQLite store in production,
    an in-memory SQLite store in tests).
    """

    def get_card(self, card_id: str) -> Card | None: ...

    def list_cards(self, board_id: str | None = None) -> list[Card]: ...

    def all_card_ids(self) -> set[str]: ...

    def insert_card(self, card: Card) -> None: ...

    def update_card(self, card: Card) -> None: ...

    def update_card_line(self, card_id: str, raw_line: str, line_number: int) -> None: ...

    def delete_cards(self, card_ids: Iterable[str]) -> int: ...

    def max_seq_id(self, board_id: str) -> int: ...

    def next_position(self, board_id: str, column: str) -> int: ...

    def get_sync_state(self, file_path: str) -> SyncState | None: ...

    def set_sync_state(self, file_path: str, file_hash: str) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


def iter_board_cards(store: CardStore, board_id: str) -> Iterator[Card]:
    """Yield a board's cards ordered by line number."""
    yield from sorted(store.list_cards(board_id), key=lambda c: c.line_number)
