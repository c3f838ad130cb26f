"""
Client side of the list sync protocol.

Keeps a local copy of one list, pushes committed mutations to the room and
reconciles the broadcasts it receives:
- Connection state machine (disconnected -> connecting -> connected, joined or not)
- Reconnection with exponential backoff and a bounded attempt count
- Optimistic local apply followed by relay; the echo is a no-op
- Full re-fetch after re-joining, since missed broadcasts are never replayed
"""

import asyncio
import json
import random
import uuid
from enum import Enum
from typing import Any, Callable, Optional

import httpx
import websockets
from websockets.exceptions import WebSocketException

from constants import CLIENT_RECONNECT_ATTEMPTS, CLIENT_RECONNECT_DELAY, CLIENT_RECONNECT_DELAY_MAX
from schemas.events import TERMINAL_JOIN_ERRORS
from sync_client.api import ListApiClient
from sync_client.state import ListState
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ReconnectBackoff:
    """Delays between reconnect attempts, bounded in number.

    The delay doubles from `base_delay` up to `max_delay`, with up to 10%
    jitter on top. After `max_attempts` delays without a successful open the
    backoff is exhausted and the agent stops reconnecting.
    """

    def __init__(
        self,
        base_delay: float = CLIENT_RECONNECT_DELAY,
        max_delay: float = CLIENT_RECONNECT_DELAY_MAX,
        max_attempts: int = CLIENT_RECONNECT_ATTEMPTS,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** self.attempts))
        self.attempts += 1
        return delay + delay * 0.1 * random.random()

    def reset(self):
        self.attempts = 0


class ClientSyncAgent:
    def __init__(
        self,
        base_url: str,
        list_slug: str,
        session_id: Optional[str] = None,
        password: Optional[str] = None,
        api: Optional[ListApiClient] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        on_change: Optional[Callable[[dict], Any]] = None,
        reconnect_delay: float = CLIENT_RECONNECT_DELAY,
        reconnect_delay_max: float = CLIENT_RECONNECT_DELAY_MAX,
        reconnect_attempts: int = CLIENT_RECONNECT_ATTEMPTS,
    ):
        """
        Args:
            base_url: HTTP base of the list server (e.g. http://localhost:8000).
            list_slug: Public slug of the list to follow.
            session_id: Stable id for this client; generated when omitted.
            password: Shared list password, if the list has one.
            api: CRUD client; defaults to one pointed at `base_url`.
            on_error: Called with the message of any `error` event.
            on_change: Called with each update that changed local state.
        """
        base = base_url.rstrip("/")
        self.ws_url = base.replace("http://", "ws://").replace("https://", "wss://") + "/ws"
        self.list_slug = list_slug
        self.session_id = session_id or uuid.uuid4().hex
        self.password = password
        self.api = api or ListApiClient(base)
        self.on_error = on_error
        self.on_change = on_change

        self.state = ListState()
        self.connection_state = ConnectionState.DISCONNECTED
        self.joined = False
        self.join_error: Optional[str] = None

        self._socket: Any = None
        self._running = False
        self._joined_once = False
        self._backoff = ReconnectBackoff(reconnect_delay, reconnect_delay_max, reconnect_attempts)

    @property
    def list_id(self) -> Optional[int]:
        return self.state.list_id

    async def load(self) -> dict:
        """Fetch the full list and replace local state with it."""
        snapshot = await self.api.get_list(self.list_slug, self.password)
        self.state.reset(snapshot)
        logger.debug(f"Loaded list {self.list_slug}: {len(self.state.items)} items")
        return snapshot

    # Transport

    async def run(self):
        """Connect and process frames until stopped or out of reconnect attempts."""
        if self._running:
            return
        self._running = True
        logger.info(f"Starting sync agent for list {self.list_slug} (session {self.session_id})")
        try:
            while self._running:
                self.connection_state = ConnectionState.CONNECTING
                try:
                    async with websockets.connect(self.ws_url) as socket:
                        await self._on_open(socket)
                        async for raw in socket:
                            await self.handle_raw(raw)
                    logger.info("Connection closed by server")
                except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                    logger.warning(f"Connection lost: {e}")
                finally:
                    self._on_close()

                if not self._running:
                    break
                if self._backoff.exhausted:
                    logger.warning(f"Giving up after {self._backoff.attempts} reconnect attempts")
                    break
                wait_time = self._backoff.next_delay()
                logger.info(f"Reconnecting in {wait_time:.2f} seconds...")
                await asyncio.sleep(wait_time)
        finally:
            self._running = False
            self.connection_state = ConnectionState.DISCONNECTED

    async def stop(self):
        self._running = False
        if self._socket is not None:
            await self._socket.close()

    async def _on_open(self, socket):
        self._socket = socket
        self.connection_state = ConnectionState.CONNECTED
        self._backoff.reset()
        logger.info(f"Connected to {self.ws_url}")
        await self.join()

    def _on_close(self):
        self._socket = None
        self.joined = False
        # Leaves missed while away are never replayed; presence restarts on rejoin
        self.state.participants.clear()
        self.connection_state = ConnectionState.DISCONNECTED

    async def join(self) -> bool:
        if self.join_error is not None:
            # A rejected join is final; reconnecting does not resend it
            logger.warning(f"Not retrying join for {self.list_slug}: {self.join_error}")
            return False
        return await self._send("join-list", {"listSlug": self.list_slug, "sessionId": self.session_id})

    async def _send(self, event: str, data: Any) -> bool:
        if self._socket is None:
            logger.debug(f"Not sending {event}: no connection")
            return False
        await self._socket.send(json.dumps({"event": event, "data": data}))
        return True

    async def _emit(self, event: str, data: Any) -> bool:
        # The change is already committed; peers that miss it re-fetch on reconnect
        if not self.joined:
            logger.debug(f"Not relaying {event}: not joined")
            return False
        return await self._send(event, data)

    # Inbound

    async def handle_raw(self, raw) -> None:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Ignoring malformed frame: {e}")
            return
        await self.handle_frame(frame)

    async def handle_frame(self, frame: dict) -> None:
        if not isinstance(frame, dict):
            logger.warning(f"Ignoring malformed frame: {frame!r}")
            return
        event = frame.get("event")
        data = frame.get("data") or {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {event!r} frame with malformed data: {data!r}")
            return
        if event == "joined-list":
            await self._on_joined(data)
        elif event == "error":
            self._on_error(str(data.get("message", "Unknown error")))
        elif event == "update":
            self._apply(data)
        elif event == "user-joined":
            self._apply({"type": "session-joined", "data": data})
        elif event == "user-left":
            self._apply({"type": "session-left", "data": data})
        else:
            logger.debug(f"Ignoring event {event!r}")

    async def _on_joined(self, data: dict):
        self.joined = True
        if self.state.list_id is None:
            self.state.list_id = data.get("listId")
        logger.info(f"Joined list {data.get('listSlug')} ({data.get('listId')})")
        if self._joined_once:
            # Anything broadcast while we were away is gone; start from the store
            try:
                await self.load()
            except httpx.HTTPError as e:
                logger.warning(f"Re-fetch after rejoin failed: {e}")
        self._joined_once = True

    def _on_error(self, message: str):
        if not self.joined and message in TERMINAL_JOIN_ERRORS:
            self.join_error = message
            logger.warning(f"Join rejected for {self.list_slug}: {message}")
        elif not self.joined:
            logger.warning(f"Join failed for {self.list_slug}, retrying on reconnect: {message}")
        else:
            logger.error(f"Server error: {message}")
        if self.on_error:
            self.on_error(message)

    def _apply(self, update: dict) -> bool:
        changed = self.state.apply(update)
        if changed and self.on_change:
            self.on_change(update)
        return changed

    # Local mutations: commit through the API, apply, then relay

    async def add_item(self, text: str, color: Optional[str] = None) -> dict:
        item = await self.api.add_item(self.list_id, text, color)
        self._apply({"type": "item-added", "data": item})
        await self._emit("item-added", item)
        return item

    async def update_item(self, item_id: int, **changes) -> dict:
        item = await self.api.update_item(item_id, **changes)
        self._apply({"type": "item-updated", "data": item})
        await self._emit("item-updated", item)
        return item

    async def toggle_item(self, item_id: int) -> dict:
        current = self.state.find(item_id)
        if current is None:
            raise KeyError(item_id)
        return await self.update_item(item_id, completed=not current.get("completed", False))

    async def delete_item(self, item_id: int) -> None:
        await self.api.delete_item(item_id)
        payload = {"itemId": item_id}
        self._apply({"type": "item-deleted", "data": payload})
        await self._emit("item-deleted", payload)

    async def reorder_items(self, updates: list) -> None:
        await self.api.reorder_items(updates)
        payload = {"updates": updates}
        self._apply({"type": "item-reordered", "data": payload})
        await self._emit("items-reordered", payload)

    async def rename(self, title: str) -> dict:
        shared_list = await self.api.update_list(self.list_id, title=title)
        payload = {"id": shared_list["id"], "title": shared_list["title"]}
        self._apply({"type": "list-updated", "data": payload})
        await self._emit("list-updated", payload)
        return shared_list
