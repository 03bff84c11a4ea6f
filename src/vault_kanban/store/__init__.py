"""Sidecar card store.

Public API:
    - Card, SyncState: Record models
    - CardStore: Protocol consumed by the sync engine
    - SqliteCardStore: SQLite implementation
    - backup_database: Timestamped backups with pruning
"""

from .base import CardStore, iter_board_cards
from .models import Card, SyncState
from .sqlite import MEMORY, SqliteCardStore, backup_database

__all__ = [
    "MEMORY",
    "Card",
    "CardStore",
    "SqliteCardStore",
    "SyncState",
    "backup_database",
    "iter_board_cards",
]
