from typing import Any, Dict, Optional
from realtime.connection import Connection
from logging_config import get_logger

logger = get_logger(__name__)


class RoomBroadcaster:
    """In-process fan-out keyed by list id.

    Rooms are plain map entries: created by the first subscribe, removed by
    the last unsubscribe. Delivery is synchronous, so frames published to one
    room reach each subscriber in publish order.
    """

    def __init__(self):
        # Format: {room_id: {connection_id: connection}}
        self._rooms: Dict[int, Dict[str, Connection]] = {}

    def subscribe(self, room_id: int, connection: Connection) -> None:
        if room_id not in self._rooms:
            self._rooms[room_id] = {}
            logger.debug(f"Room {room_id} created")
        self._rooms[room_id][connection.id] = connection
        logger.debug(f"Connection {connection.id} subscribed to room {room_id} (local connections: {len(self._rooms[room_id])})")

    def unsubscribe(self, room_id: int, connection: Connection) -> None:
        members = self._rooms.get(room_id)
        if not members:
            return
        members.pop(connection.id, None)
        if not members:
            del self._rooms[room_id]
            logger.debug(f"No more connections in room {room_id}, room dropped")

    def has_room(self, room_id: int) -> bool:
        return room_id in self._rooms

    def members(self, room_id: int) -> list:
        return list(self._rooms.get(room_id, {}).values())

    def rooms(self) -> list:
        return list(self._rooms)

    def publish(self, room_id: int, event: str, data: Any, exclude: Optional[str] = None) -> int:
        """Deliver `event` to every subscriber of `room_id` except `exclude`."""
        return self.fan_out(room_id, event, data, exclude)

    def fan_out(self, room_id: int, event: str, data: Any, exclude: Optional[str] = None) -> int:
        members = self._rooms.get(room_id)
        if not members:
            logger.debug(f"Dropping {event} for empty room {room_id}")
            return 0
        delivered = 0
        for connection_id, connection in list(members.items()):
            if connection_id == exclude or connection.closed:
                continue
            try:
                connection.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error delivering {event} to connection {connection_id} in room {room_id}: {e}")
        logger.debug(f"Broadcasted {event} to {delivered} connections in room {room_id}")
        return delivered

    async def close(self) -> None:
        self._rooms.clear()
