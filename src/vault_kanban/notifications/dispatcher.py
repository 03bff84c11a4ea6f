"""Fan-out of change events to registered listeners.

Dispatch is synchronous and fire-and-forget: listener failures are logged
and never propagate to the operation that produced the event.
"""

from __future__ import annotations

import logging

from .base import ChangeListener
from .events import ChangeEvent, ChangeEventType

logger = logging.getLogger(__name__)


class ChangeDispatcher:
    """Delivers change events to every registered listener.

    Example:
        >>> dispatcher = ChangeDispatcher()
        >>> dispatcher.register(CallbackListener(print))
        >>> dispatcher.emit(ChangeEventType.BOARD_RECONCILED, "work")

    """

    def __init__(self, listeners: list[ChangeListener] | None = None) -> None:
        self._listeners: list[ChangeListener] = list(listeners or [])

    @property
    def listeners(self) -> tuple[ChangeListener, ...]:
        """Registered listeners in registration order."""
        return tuple(self._listeners)

    def register(self, listener: ChangeListener) -> None:
        """Add a listener. Registering the same object twice is a no-op."""
        if listener not in self._listeners:
            self._listeners.append(listener)
            logger.debug("Registered change listener %s", listener.listener_name)

    def unregister(self, listener: ChangeListener) -> None:
        """Remove a listener if present."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, event: ChangeEvent) -> int:
        """Send ``event`` to all listeners.

        Args:
            event: Event to deliver.

        Returns:
            Number of listeners that reported success.

        """
        if not self._listeners:
            logger.debug("No listeners registered, dropping %s", event.type)
            return 0

        delivered = 0
        for listener in list(self._listeners):
            try:
                ok = listener.notify(event)
            except Exception as e:
                logger.error(
                    "Listener %s raised exception: %s", listener.listener_name, str(e)
                )
                continue
            if ok:
                delivered += 1
            else:
                logger.warning(
                    "Listener %s failed to handle event %s",
                    listener.listener_name,
                    event.type.value,
                )

        logger.debug(
            "Dispatched event=%s to %d/%d listeners",
            event.type.value,
            delivered,
            len(self._listeners),
        )
        return delivered

    def emit(
        self, event_type: ChangeEventType, board_id: str, card_id: str | None = None
    ) -> int:
        """Build and dispatch an event in one call."""
        return self.dispatch(ChangeEvent(type=event_type, board_id=board_id, card_id=card_id))
