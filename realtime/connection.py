import asyncio
import uuid
from typing import Any, Optional
from fastapi import WebSocket
from logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """One attached client as seen by the gateway.

    `send` is synchronous so a broadcast never suspends the handler that
    triggered it; subclasses decide how the frame reaches the peer.
    """

    def __init__(self, connection_id: Optional[str] = None, user_agent: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex
        self.user_agent = user_agent
        self.closed = False
        self._pending: set[asyncio.Task] = set()

    def send(self, event: str, data: Any) -> None:
        raise NotImplementedError

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Keep a reference to a handler task spawned for this connection."""
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def mark_closed(self) -> None:
        self.closed = True

    def __repr__(self):
        return f"<{type(self).__name__} {self.id[:8]}{' closed' if self.closed else ''}>"


class WebSocketConnection(Connection):
    """Connection backed by a FastAPI WebSocket with an ordered outbound queue."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        super().__init__(connection_id, websocket.headers.get("user-agent"))
        self.websocket = websocket
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._pump())

    def send(self, event: str, data: Any) -> None:
        if self.closed:
            logger.debug(f"Dropping {event} for closed connection {self.id}")
            return
        self._outbox.put_nowait({"event": event, "data": data})

    async def _pump(self):
        while True:
            frame = await self._outbox.get()
            try:
                await self.websocket.send_json(frame)
            except Exception as e:
                # Delivery is at-most-once; the peer re-fetches after reconnecting
                logger.warning(f"Error sending {frame['event']} to connection {self.id}: {e}")
                self.mark_closed()
                return

    async def close(self) -> None:
        self.mark_closed()
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
