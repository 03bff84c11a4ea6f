"""Change event types and payload model.

Events tell listeners (a websocket broadcaster, a UI refresh hook) that
board data changed. They carry only identifiers; listeners re-read the store
for details.

Example:
    >>> from vault_kanban.notifications import ChangeEvent, ChangeEventType
    >>> event = ChangeEvent(type=ChangeEventType.CARD_UPDATED, board_id="work", card_id="ab12cd34")
    >>> event.type.value
    'card_updated'

"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from vault_kanban.core.timing import utc_now


class ChangeEventType(StrEnum):
    """Kinds of change a listener can be told about."""

    BOARD_RECONCILED = "board_reconciled"
    CARD_UPDATED = "card_updated"
    CARD_MOVED = "card_moved"
    COLUMNS_STAMPED = "columns_stamped"


class ChangeEvent(BaseModel):
    """Immutable notification payload.

    Attributes:
        type: What happened.
        board_id: Affected board.
        card_id: Affected card, None for board-wide events.
        timestamp: When the change was made (UTC).

    """

    model_config = ConfigDict(frozen=True)

    type: ChangeEventType
    board_id: str
    card_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
