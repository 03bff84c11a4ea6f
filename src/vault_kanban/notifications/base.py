"""Abstract base class for change listeners.

Listeners MUST implement notify() so that it never raises. Notification is
best-effort: a failing listener must not turn a successful reconcile or
write-back into a failure. The dispatcher still guards against listeners
that break this contract.

Example:
    >>> class LogListener(ChangeListener):
    ...     @property
    ...     def listener_name(self) -> str:
    ...         return "log"
    ...
    ...     def notify(self, event: ChangeEvent) -> bool:
    ...         logger.info("changed: %s %s", event.type, event.board_id)
    ...         return True

"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from .events import ChangeEvent

logger = logging.getLogger(__name__)


class ChangeListener(ABC):
    """Receiver of change events.

    Concrete implementations must implement:
        - listener_name: Identifier used in log messages
        - notify(): Deliver one event (NEVER raises)
    """

    @property
    @abstractmethod
    def listener_name(self) -> str:
        """Identifier for this listener (e.g. 'websocket')."""
        ...

    @abstractmethod
    def notify(self, event: ChangeEvent) -> bool:
        """Deliver an event. Returns True on success, False on failure.

        MUST NOT raise exceptions - all errors logged internally.

        Args:
            event: The change that happened.

        Returns:
            True if the event was delivered.

        """
        ...


class CallbackListener(ChangeListener):
    """Adapts a plain callable into a listener.

    Args:
        callback: Called with each event.
        name: Listener name for logs.

    """

    def __init__(self, callback: Callable[[ChangeEvent], object], name: str = "callback") -> None:
        self._callback = callback
        self._name = name

    @property
    def listener_name(self) -> str:
        return self._name

    def notify(self, event: ChangeEvent) -> bool:
        try:
            self._callback(event)
        except Exception as e:
            logger.error(
                "Notification failed: event=%s, listener=%s, error=%s",
                event.type,
                self.listener_name,
                str(e),
            )
            return False
        return True
