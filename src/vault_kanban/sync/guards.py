"""Execution guards around board file writes.

Two independent concerns:

- BoardLockRegistry: one re-entrant lock per board id, held for the whole
  read-modify-write of a reconcile or write-back so the two directions never
  interleave on the same file. Different boards never contend.
- WatchSuppressor: scoped "ignore changes I am making to this path" flags that
  a file watcher consults before triggering a reconcile. Release is guaranteed
  by the context manager regardless of how the write exits.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["BoardLockRegistry", "WatchSuppressor"]


class BoardLockRegistry:
    """Per-board mutual exclusion."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, board_id: str) -> threading.RLock:
        """Return the lock for ``board_id``, creating it on first use."""
        with self._guard:
            lock = self._locks.get(board_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[board_id] = lock
            return lock

    @contextmanager
    def hold(self, board_id: str) -> Iterator[None]:
        """Hold the board's lock for the duration of the block."""
        lock = self.lock_for(board_id)
        with lock:
            yield


class WatchSuppressor:
    """Reference-counted per-path suppression of watcher-triggered reconciles."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._active: Counter[str] = Counter()

    @staticmethod
    def _key(path: Path | str) -> str:
        return str(Path(path).resolve())

    @contextmanager
    def suppress(self, path: Path | str) -> Iterator[None]:
        """Suppress change detection for ``path`` while the block runs."""
        key = self._key(path)
        with self._guard:
            self._active[key] += 1
        try:
            yield
        finally:
            with self._guard:
                self._active[key] -= 1
                if self._active[key] <= 0:
                    del self._active[key]

    def is_suppressed(self, path: Path | str) -> bool:
        """Return True while any write to ``path`` is in progress."""
        with self._guard:
            return self._active.get(self._key(path), 0) > 0
