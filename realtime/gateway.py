import asyncio
import functools
import time
from typing import Any, Optional
from pydantic import ValidationError
from errors import NotJoinedYet, RoomNotFound
from realtime.broadcaster import RoomBroadcaster
from realtime.connection import Connection
from realtime.registry import Membership, SessionRegistry
from schemas.events import (
    ERROR_EVENT,
    INVALID_JOIN_MESSAGE,
    JOIN_EVENT,
    JOIN_FAILED_MESSAGE,
    JOINED_EVENT,
    RELAY_EVENTS,
    UPDATE_EVENT,
    USER_JOINED_EVENT,
    USER_LEFT_EVENT,
    ErrorMessage,
    JoinedList,
    JoinListRequest,
    ListUpdate,
    Presence,
)
from logging_config import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionGateway:
    """Join handshake, relay of committed mutations and presence for one process.

    All map mutations happen between awaits, so handlers running for
    different connections never observe a half-updated registry. The only
    suspension points are the store calls in `join` and `disconnect`.
    """

    def __init__(self, store, broadcaster: Optional[RoomBroadcaster] = None, registry: Optional[SessionRegistry] = None):
        self.store = store
        self.broadcaster = broadcaster if broadcaster is not None else RoomBroadcaster()
        self.registry = registry if registry is not None else SessionRegistry(store)

    def dispatch(self, connection: Connection, frame: Any) -> Optional[asyncio.Task]:
        """Route one inbound frame. Joins run as their own task; relays run inline."""
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.warning(f"Ignoring malformed frame from connection {connection.id}")
            return None
        event = frame["event"]
        data = frame.get("data")
        if event == JOIN_EVENT:
            return connection.track(asyncio.create_task(self.join(connection, data)))
        if event in RELAY_EVENTS:
            self.relay(connection, event, data)
            return None
        logger.warning(f"Ignoring unknown event {event!r} from connection {connection.id}")
        return None

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _error(self, connection: Connection, message: str) -> None:
        connection.send(ERROR_EVENT, ErrorMessage(message=message).model_dump(by_alias=True))

    async def join(self, connection: Connection, data: Any) -> Optional[Membership]:
        try:
            request = JoinListRequest.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid join request from connection {connection.id}: {e.error_count()} errors")
            self._error(connection, INVALID_JOIN_MESSAGE)
            return None

        logger.info(f"Join request from connection {connection.id} for list {request.list_slug}")
        try:
            shared_list = await self._run(self.store.resolve_list, request.list_slug)
        except Exception as e:
            logger.error(f"Error joining list {request.list_slug}: {e}", exc_info=True)
            self._error(connection, JOIN_FAILED_MESSAGE)
            return None
        if not shared_list:
            rejection = RoomNotFound(request.list_slug)
            logger.info(f"Join rejected for connection {connection.id}: list {rejection.list_slug} not found")
            self._error(connection, rejection.message)
            return None

        room_id = shared_list["id"]
        if connection.closed:
            logger.info(f"Connection {connection.id} closed before join to list {room_id} resolved")
            return None

        await self.registry.touch(room_id, request.session_id, connection.user_agent)
        if connection.closed:
            # The session was written for a connection that is already gone
            if not self.registry.holds_session(request.session_id):
                await self.registry.forget(request.session_id)
            logger.info(f"Connection {connection.id} closed during join to list {room_id}")
            return None

        membership = Membership(
            connection_id=connection.id,
            session_id=request.session_id,
            list_slug=request.list_slug,
            room_id=room_id,
            user_agent=connection.user_agent,
        )
        previous = self.registry.attach(membership)
        if previous is not None:
            self._leave_room(connection, previous)
        self.broadcaster.subscribe(room_id, connection)
        self.broadcaster.publish(
            room_id,
            USER_JOINED_EVENT,
            Presence(session_id=request.session_id, timestamp=now_ms()).model_dump(by_alias=True),
            exclude=connection.id,
        )
        connection.send(
            JOINED_EVENT,
            JoinedList(list_id=room_id, list_slug=request.list_slug, timestamp=now_ms()).model_dump(by_alias=True),
        )
        logger.info(f"Connection {connection.id} (session {request.session_id}) joined list {request.list_slug}")

        if previous is not None and previous.session_id != request.session_id and not self.registry.holds_session(previous.session_id):
            await self.registry.forget(previous.session_id)
        return membership

    def relay(self, connection: Connection, event: str, data: Any) -> int:
        """Broadcast an already-committed mutation to the connection's room, sender included."""
        try:
            membership = self.registry.require(connection.id)
        except NotJoinedYet:
            logger.debug(f"Dropping {event} from connection {connection.id}: not joined")
            return 0
        update = ListUpdate(type=RELAY_EVENTS[event], data=data, timestamp=now_ms())
        delivered = self.broadcaster.publish(membership.room_id, UPDATE_EVENT, update.model_dump(by_alias=True))
        logger.debug(f"{update.type} relayed in list {membership.room_id} to {delivered} connections")
        return delivered

    def _leave_room(self, connection: Connection, membership: Membership) -> None:
        self.broadcaster.unsubscribe(membership.room_id, connection)
        # Another tab-connection of the same session keeps it present
        if self.registry.holds_session(membership.session_id, membership.room_id):
            return
        self.broadcaster.publish(
            membership.room_id,
            USER_LEFT_EVENT,
            Presence(session_id=membership.session_id, timestamp=now_ms()).model_dump(by_alias=True),
            exclude=connection.id,
        )

    async def disconnect(self, connection: Connection) -> Optional[Membership]:
        connection.mark_closed()
        membership = self.registry.detach(connection.id)
        if membership is None:
            logger.debug(f"Connection {connection.id} disconnected without joining")
            return None
        self._leave_room(connection, membership)
        logger.info(f"Connection {connection.id} (session {membership.session_id}) left list {membership.room_id}")
        if not self.registry.holds_session(membership.session_id):
            await self.registry.forget(membership.session_id)
        return membership
