from pydantic import Field
from typing import Any, Literal
from errors import RoomNotFound
from schemas.lists import CamelModel

ListUpdateType = Literal[
    "item-added",
    "item-updated",
    "item-deleted",
    "item-reordered",
    "list-updated",
    "session-joined",
    "session-left",
]

# Inbound relay event name -> ListUpdate type
RELAY_EVENTS: dict[str, str] = {
    "item-added": "item-added",
    "item-updated": "item-updated",
    "item-deleted": "item-deleted",
    "items-reordered": "item-reordered",
    "list-updated": "list-updated",
}

JOIN_EVENT = "join-list"
JOINED_EVENT = "joined-list"
ERROR_EVENT = "error"
UPDATE_EVENT = "update"
USER_JOINED_EVENT = "user-joined"
USER_LEFT_EVENT = "user-left"

INVALID_JOIN_MESSAGE = "Invalid join request"
JOIN_FAILED_MESSAGE = "Failed to join list"

# Join rejections that resending the same join cannot fix
TERMINAL_JOIN_ERRORS = frozenset({RoomNotFound.default_message, INVALID_JOIN_MESSAGE})


class Frame(CamelModel):
    """Envelope for every message on the socket: {"event": ..., "data": ...}."""
    event: str
    data: Any = None

class ListUpdate(CamelModel):
    type: ListUpdateType
    data: Any = None
    timestamp: int

class JoinListRequest(CamelModel):
    list_slug: str = Field(min_length=1)
    session_id: str = Field(min_length=1)

class JoinedList(CamelModel):
    list_id: int
    list_slug: str
    timestamp: int

class Presence(CamelModel):
    session_id: str
    timestamp: int

class ErrorMessage(CamelModel):
    message: str
