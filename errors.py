from typing import Optional


class ListSyncError(Exception):
    """Base class for errors raised by the sync layer."""

    default_message = "List sync error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(ListSyncError):
    """A join named a slug the list store does not know."""

    default_message = "List not found"

    def __init__(self, list_slug: str, message: Optional[str] = None):
        self.list_slug = list_slug
        super().__init__(message)


class PersistenceUnavailable(ListSyncError):
    """A best-effort write to the session store failed."""

    default_message = "Session store unavailable"


class NotJoinedYet(ListSyncError):
    """A connection relayed or disconnected before a successful join."""

    default_message = "Connection has not joined a list"

    def __init__(self, connection_id: str, message: Optional[str] = None):
        self.connection_id = connection_id
        super().__init__(message)
