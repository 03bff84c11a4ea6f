"""Atomic file replacement.

Content is written to a temporary sibling and renamed over the target, so a
watcher or a crash never observes a half-written board file. The temp file
lives in the same directory to keep the rename on one filesystem.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["atomic_write_text", "read_text_exact"]


def read_text_exact(path: Path, encoding: str = "utf-8") -> str:
    """Read a file without newline translation, so \\r\\n survives a rewrite."""
    with path.open("r", encoding=encoding, newline="") as f:
        return f.read()


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``content`` atomically.

    Args:
        path: Target file.
        content: Full new file contents.
        encoding: Text encoding.

    Raises:
        OSError: If the temp file cannot be written or renamed. The temp file
            is removed and the target is left untouched.

    """
    fd: int | None = None
    tmp_path_str: str | None = None

    try:
        fd, tmp_path_str = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        # Inner try/finally ensures fd is closed if fdopen fails
        try:
            # newline="" keeps \r\n line endings exactly as given
            with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
                fd = None  # os.fdopen takes ownership
                f.write(content)
        finally:
            if fd is not None:
                os.close(fd)

        if path.exists():
            with contextlib.suppress(OSError):
                os.chmod(tmp_path_str, path.stat().st_mode & 0o777)

        os.replace(tmp_path_str, path)
        logger.debug("Atomic write completed: %s -> %s", tmp_path_str, path)
        tmp_path_str = None

    except Exception:
        if tmp_path_str is not None and os.path.exists(tmp_path_str):
            with contextlib.suppress(OSError):
                os.unlink(tmp_path_str)
        raise
