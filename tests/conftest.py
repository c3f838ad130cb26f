from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Optional

import pytest

from backend import next_item_order
from errors import PersistenceUnavailable
from realtime.connection import Connection
from realtime.gateway import ConnectionGateway


class FakeConnection(Connection):
    """In-process transport: records every frame the gateway sends."""

    def __init__(self, connection_id: str, user_agent: str = "pytest"):
        super().__init__(connection_id, user_agent)
        self.frames: list[dict[str, Any]] = []

    def send(self, event: str, data: Any) -> None:
        if self.closed:
            return
        self.frames.append({"event": event, "data": data})

    def events(self, name: Optional[str] = None) -> list[dict[str, Any]]:
        return [f for f in self.frames if name is None or f["event"] == name]


class DummyListStore:
    """In-memory stand-in for the Redis list store."""

    def __init__(self) -> None:
        self.lists: dict[int, dict[str, Any]] = {}
        self.items: dict[int, dict[str, Any]] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.touches: list[tuple[int, str, Optional[str]]] = []
        self.removals: list[str] = []
        self.fail_sessions = False
        self.resolve_gate: Optional[threading.Event] = None
        self._list_seq = 0
        self._item_seq = 0

    def add_list(self, slug: str, title: str = "Groceries", password: Optional[str] = None) -> dict[str, Any]:
        return self.create_list(slug, title=title, password=password)

    # list store

    def create_list(self, slug, title=None, description=None, password=None, ttl=None, expires_at=None):
        if any(lst["slug"] == slug for lst in self.lists.values()):
            return None
        self._list_seq += 1
        now = datetime.now().isoformat()
        record = {
            "id": self._list_seq,
            "slug": slug,
            "title": title or "My List",
            "description": description,
            "password": password,
            "created_at": now,
            "updated_at": now,
            "expires_at": expires_at,
        }
        self.lists[record["id"]] = record
        return dict(record)

    def get_list_by_slug(self, slug):
        for record in self.lists.values():
            if record["slug"] == slug:
                return dict(record)
        return None

    def resolve_list(self, slug):
        if self.resolve_gate is not None:
            self.resolve_gate.wait(timeout=5)
        return self.get_list_by_slug(slug)

    def update_list(self, list_id, title=None, description=None):
        record = self.lists.get(list_id)
        if record is None:
            return None
        if title is not None:
            record["title"] = title
        if description is not None:
            record["description"] = description
        return dict(record)

    def get_list_items(self, list_id):
        items = [dict(i) for i in self.items.values() if i["list_id"] == list_id]
        return sorted(items, key=lambda i: (i["order"], i["id"]))

    def create_item(self, list_id, text, color=None):
        if list_id not in self.lists:
            return None
        self._item_seq += 1
        now = datetime.now().isoformat()
        item = {
            "id": self._item_seq,
            "list_id": list_id,
            "text": text,
            "completed": False,
            "color": color or "primary",
            "order": next_item_order(i["order"] for i in self.get_list_items(list_id)),
            "created_at": now,
            "updated_at": now,
        }
        self.items[item["id"]] = item
        return dict(item)

    def update_item(self, item_id, **changes):
        item = self.items.get(item_id)
        if item is None:
            return None
        item.update({k: v for k, v in changes.items() if v is not None})
        return dict(item)

    def delete_item(self, item_id):
        return self.items.pop(item_id, None) is not None

    def reorder_items(self, updates):
        for update in updates:
            self.update_item(update["id"], order=update["order"])
        return True

    # session store

    def touch_session(self, list_id, session_id, user_agent=None):
        if self.fail_sessions:
            raise PersistenceUnavailable("redis down")
        self.touches.append((list_id, session_id, user_agent))
        now = datetime.now().isoformat()
        session = self.sessions.get(session_id) or {
            "session_id": session_id,
            "user_agent": user_agent,
            "created_at": now,
        }
        session.update({"list_id": list_id, "last_activity": now})
        self.sessions[session_id] = session
        return dict(session)

    def remove_session(self, session_id):
        if self.fail_sessions:
            raise PersistenceUnavailable("redis down")
        self.removals.append(session_id)
        return self.sessions.pop(session_id, None) is not None

    def get_active_sessions(self, list_id, minutes_threshold=5):
        return [dict(s) for s in self.sessions.values() if s["list_id"] == list_id]


@pytest.fixture
def store() -> DummyListStore:
    store = DummyListStore()
    store.add_list("Alpha-Bravo-123", title="Groceries")
    store.add_list("Charlie-Delta-456", title="Chores")
    return store


@pytest.fixture
def gateway(store: DummyListStore) -> ConnectionGateway:
    return ConnectionGateway(store=store)


def join_data(slug: str, session_id: str) -> dict[str, str]:
    return {"listSlug": slug, "sessionId": session_id}
