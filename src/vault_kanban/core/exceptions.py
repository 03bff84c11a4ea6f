"""Exception hierarchy for vault-kanban.

All project exceptions derive from VaultKanbanError. The reconcile and
write-back entry points catch these internally and report them as result
values; only configuration loading lets ConfigError reach the caller.
"""

from __future__ import annotations


class VaultKanbanError(Exception):
    """Base exception for all vault-kanban errors."""


class ConfigError(VaultKanbanError):
    """Configuration file missing, malformed, or failing validation."""


class StoreError(VaultKanbanError):
    """Sidecar store could not be opened or queried."""


class BoardReadError(VaultKanbanError):
    """Board source file is missing or unreadable."""


class SafetyAbort(VaultKanbanError):
    """Bulk deletion refused by a reconcile safety guard."""


class StampWriteError(VaultKanbanError):
    """Writing repaired identity markers back to the board file failed."""


class WriteBackError(VaultKanbanError):
    """Base for write-back precondition and locate failures.

    Attributes:
        line_number: 1-based line the operation was aimed at (0 if unknown).

    """

    def __init__(self, message: str, line_number: int = 0) -> None:
        super().__init__(message)
        self.line_number = line_number


class CardNotFoundError(WriteBackError):
    """No card with the requested ID exists in the store."""


class LineLocateError(WriteBackError):
    """The card's source line could not be found in the current file."""


class MissingMarkerError(LineLocateError):
    """No line in the file carries the card's identity marker."""


class NotACheckboxError(WriteBackError):
    """The located line is not a checkbox list item."""


class UnknownPriorityError(WriteBackError):
    """Requested priority id is not configured for the board."""
