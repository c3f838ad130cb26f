import asyncio
import json
from typing import Any, Dict, Optional
from realtime.broadcaster import RoomBroadcaster
from realtime.connection import Connection
from logging_config import get_logger

logger = get_logger(__name__)


class RedisRoomBroadcaster(RoomBroadcaster):
    """Broadcaster that routes every room event through Redis pub/sub.

    Each instance tracks only its own connections. Publishing goes to the
    list's channel, and one listener task per locally populated room fans
    received envelopes out to local subscribers. This enables horizontal
    scaling; per-room order is the channel's order.
    """

    def __init__(self, backend):
        super().__init__()
        self.backend = backend
        # Format: {room_id: task}
        self._listeners: Dict[int, asyncio.Task] = {}

    def subscribe(self, room_id: int, connection: Connection) -> None:
        super().subscribe(room_id, connection)
        if room_id not in self._listeners or self._listeners[room_id].done():
            # Subscribe before returning so the join broadcast that follows is not missed
            pubsub = self.backend.subscribe_to_list(room_id)
            self._listeners[room_id] = asyncio.create_task(self._listen(room_id, pubsub))
            logger.debug(f"Started Redis pub/sub listener for list: {room_id}")

    def unsubscribe(self, room_id: int, connection: Connection) -> None:
        super().unsubscribe(room_id, connection)
        if not self.has_room(room_id):
            task = self._listeners.pop(room_id, None)
            if task is not None:
                task.cancel()
                logger.debug(f"Cancelled pub/sub task for list {room_id}")

    def publish(self, room_id: int, event: str, data: Any, exclude: Optional[str] = None) -> int:
        envelope = {"event": event, "data": data, "exclude": exclude}
        return self.backend.publish_event(room_id, envelope)

    def handle_message(self, room_id: int, message: dict) -> int:
        """Fan one raw pub/sub message out to local subscribers."""
        if message.get("type") != "message":
            return 0
        try:
            envelope = json.loads(message["data"])
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            logger.error(f"Error parsing message from Redis for list {room_id}: {e}")
            return 0
        if not isinstance(envelope, dict) or "event" not in envelope:
            logger.warning(f"Ignoring malformed envelope on list {room_id} channel")
            return 0
        return self.fan_out(room_id, envelope["event"], envelope.get("data"), envelope.get("exclude"))

    async def _listen(self, room_id: int, pubsub):
        """Background task: pull messages from the list channel and deliver locally."""
        logger.info(f"Starting Redis pub/sub listener for list: {room_id}")
        loop = asyncio.get_running_loop()

        def get_message():
            """Blocking call to get next message from Redis pub/sub with timeout."""
            return pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)

        try:
            while self.has_room(room_id):
                try:
                    message = await loop.run_in_executor(None, get_message)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error in pubsub.get_message() for list {room_id}: {e}", exc_info=True)
                    await asyncio.sleep(1.0)
                    continue
                if message is None:
                    continue
                self.handle_message(room_id, message)
            logger.info(f"No more connections in list {room_id}, stopping listener")
        except asyncio.CancelledError:
            logger.info(f"Redis listener task cancelled for list: {room_id}")
        finally:
            try:
                pubsub.close()
            except Exception as e:
                logger.error(f"Error closing pub/sub for list {room_id}: {e}")

    async def close(self) -> None:
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for task in listeners:
            task.cancel()
        if listeners:
            await asyncio.gather(*listeners, return_exceptions=True)
        await super().close()
