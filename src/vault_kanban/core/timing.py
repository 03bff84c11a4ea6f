"""Centralized time API for vault-kanban.

Card timestamps and sync-state rows are stored as naive UTC datetimes.
The clock is injectable so tests can pin "now".

Usage:
    from vault_kanban.core.timing import utc_now_naive, format_backup_stamp

    card.updated_at = utc_now_naive()
    name = f"kanban.backup-{format_backup_stamp()}.db"
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime


# Injectable clock for testing - returns naive UTC datetime
def _default_clock() -> datetime:
    """Return current naive UTC time."""
    return datetime.now(UTC).replace(tzinfo=None)


_clock: Callable[[], datetime] = _default_clock


def set_clock(clock: Callable[[], datetime]) -> None:
    """Set custom clock for testing.

    Args:
        clock: Function returning naive UTC datetime

    """
    global _clock
    _clock = clock


def reset_clock() -> None:
    """Reset clock to default (real time)."""
    global _clock
    _clock = _default_clock


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return _clock().replace(tzinfo=UTC)


def utc_now_naive() -> datetime:
    """Get current UTC time without timezone info.

    Used for card created/updated timestamps and sync-state rows.

    Returns:
        Naive datetime representing UTC time

    """
    return _clock()


def format_backup_stamp(dt: datetime | None = None) -> str:
    """Format a datetime as a sortable, filename-safe stamp.

    Args:
        dt: Datetime to format, defaults to now (naive UTC).

    Returns:
        String like ``20260107T120000``. Lexical order equals time order.

    """
    if dt is None:
        dt = utc_now_naive()
    return dt.strftime("%Y%m%dT%H%M%S")
