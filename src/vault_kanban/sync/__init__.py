"""Bidirectional sync between board files and the card store.

Public API:
    - Reconciler / ReconcileResult: file -> store passes
    - WriteBackEngine / WriteBackResult: store -> file single-line edits
    - SyncService / MoveResult: facade sharing locks and watch suppression
    - atomic_write_text: temp-file-then-rename writer
    - BoardLockRegistry / WatchSuppressor: write guards
"""

from .atomic import atomic_write_text, read_text_exact
from .guards import BoardLockRegistry, WatchSuppressor
from .reconciler import ReconcileResult, Reconciler
from .service import MoveResult, SyncService
from .writeback import WriteBackEngine, WriteBackResult, locate_line

__all__ = [
    "BoardLockRegistry",
    "MoveResult",
    "ReconcileResult",
    "Reconciler",
    "SyncService",
    "WatchSuppressor",
    "WriteBackEngine",
    "WriteBackResult",
    "atomic_write_text",
    "locate_line",
    "read_text_exact",
]
