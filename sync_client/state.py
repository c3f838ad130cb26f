from dataclasses import dataclass, field
from typing import Any, Optional
from logging_config import get_logger

logger = get_logger(__name__)


def _is_item(payload: Any) -> bool:
    return isinstance(payload, dict) and _is_id(payload.get("id")) and _is_order(payload.get("order", 0))


def _is_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_order(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _session_id(payload: Any) -> Optional[str]:
    session_id = payload.get("sessionId") if isinstance(payload, dict) else payload
    return session_id if isinstance(session_id, str) else None


def _item_id(payload: Any) -> Optional[int]:
    if isinstance(payload, dict):
        if "itemId" in payload:
            return payload["itemId"]
        return payload.get("id")
    return payload


@dataclass
class ListState:
    """Local copy of one list, reconciled against broadcast updates.

    Every handler either replaces, removes or does nothing, so applying the
    same update twice leaves the state as applying it once.
    """

    list_id: Optional[int] = None
    title: str = ""
    items: list = field(default_factory=list)
    participants: set = field(default_factory=set)

    def reset(self, snapshot: dict) -> None:
        """Replace everything with a freshly fetched list (`GET /lists/{slug}`)."""
        self.list_id = snapshot.get("id")
        self.title = snapshot.get("title", "")
        self.items = sorted((dict(item) for item in snapshot.get("items", [])), key=_sort_key)

    def find(self, item_id: int) -> Optional[dict]:
        for item in self.items:
            if item["id"] == item_id:
                return item
        return None

    def apply(self, update: dict) -> bool:
        """Apply one `ListUpdate`; returns True if local state changed.

        Payloads are relayed unchecked by the server, so anything malformed
        is dropped here instead of raising.
        """
        if not isinstance(update, dict) or not isinstance(update.get("type"), str):
            logger.warning(f"Ignoring malformed update: {update!r}")
            return False
        handler = self._handlers.get(update["type"])
        if handler is None:
            logger.debug(f"Ignoring update of type {update['type']!r}")
            return False
        return handler(self, update.get("data"))

    def _item_added(self, item: dict) -> bool:
        # The originator already inserted it optimistically before the echo
        if not _is_item(item) or self.find(item["id"]) is not None:
            return False
        self.items.append(dict(item))
        self.items.sort(key=_sort_key)
        return True

    def _item_updated(self, item: dict) -> bool:
        if not _is_item(item):
            return False
        for index, existing in enumerate(self.items):
            if existing["id"] == item["id"]:
                changed = existing != item
                self.items[index] = dict(item)
                if changed:
                    self.items.sort(key=_sort_key)
                return changed
        return False

    def _item_deleted(self, payload: Any) -> bool:
        item_id = _item_id(payload)
        before = len(self.items)
        self.items = [item for item in self.items if item["id"] != item_id]
        return len(self.items) != before

    def _items_reordered(self, payload: Any) -> bool:
        updates = payload.get("updates") if isinstance(payload, dict) else payload
        if not isinstance(updates, list):
            return False
        changed = False
        for entry in updates:
            if not isinstance(entry, dict) or not _is_order(entry.get("order")):
                continue
            item = self.find(entry.get("id"))
            if item is not None and item.get("order") != entry.get("order"):
                item["order"] = entry["order"]
                changed = True
        if changed:
            self.items.sort(key=_sort_key)
        return changed

    def _list_updated(self, payload: Any) -> bool:
        if not isinstance(payload, dict) or not isinstance(payload.get("title"), str):
            return False
        changed = self.title != payload["title"]
        self.title = payload["title"]
        return changed

    def _session_joined(self, payload: Any) -> bool:
        session_id = _session_id(payload)
        if session_id is None or session_id in self.participants:
            return False
        self.participants.add(session_id)
        return True

    def _session_left(self, payload: Any) -> bool:
        session_id = _session_id(payload)
        if session_id not in self.participants:
            return False
        self.participants.discard(session_id)
        return True

    _handlers = {
        "item-added": _item_added,
        "item-updated": _item_updated,
        "item-deleted": _item_deleted,
        "item-reordered": _items_reordered,
        "list-updated": _list_updated,
        "session-joined": _session_joined,
        "session-left": _session_left,
    }


def _sort_key(item: dict):
    return (item.get("order", 0), item.get("id", 0))
