"""Change notification for vault-kanban.

Public API:
    - ChangeEventType: Kinds of change
    - ChangeEvent: Immutable event payload
    - ChangeListener: ABC for listeners (notify() never raises)
    - CallbackListener: Listener wrapping a plain callable
    - ChangeDispatcher: Fans events out to listeners
"""

from .base import CallbackListener, ChangeListener
from .dispatcher import ChangeDispatcher
from .events import ChangeEvent, ChangeEventType

__all__ = [
    "CallbackListener",
    "ChangeDispatcher",
    "ChangeEvent",
    "ChangeEventType",
    "ChangeListener",
]
