from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import app as app_module
from backend import get_store, next_item_order
from conftest import DummyListStore
from realtime.gateway import ConnectionGateway
from routers import lists as lists_routes
from sync_client.api import ListApiClient


@pytest.fixture
def client(store: DummyListStore) -> TestClient:
    app_module.app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app_module.app)
    app_module.app.dependency_overrides.clear()


def test_next_item_order_prepends() -> None:
    assert next_item_order([]) == 0
    assert next_item_order([0]) == -1
    assert next_item_order([3, 1, 2]) == 0
    assert next_item_order([-5, 4]) == -6


def test_generate_slug_shape() -> None:
    first, second, number = lists_routes.generate_slug().split("-")
    assert first in lists_routes.NATO_PHONETIC
    assert second in lists_routes.NATO_PHONETIC
    assert 100 <= int(number) <= 999


def test_create_list_hides_password(client: TestClient) -> None:
    resp = client.post("/lists/", json={"title": "Party", "password": "hunter2", "expiresIn": "1d"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Party"
    assert data["isPasswordProtected"] is True
    assert data["expiresAt"] is not None
    assert "password" not in data


def test_create_list_retries_taken_slug(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    slugs = iter(["Alpha-Bravo-123", "Echo-Golf-777"])
    monkeypatch.setattr(lists_routes, "generate_slug", lambda: next(slugs))

    resp = client.post("/lists/", json={})

    assert resp.status_code == 200
    assert resp.json()["slug"] == "Echo-Golf-777"
    assert resp.json()["title"] == "My List"


def test_get_list_with_items_and_viewers(client: TestClient, store: DummyListStore) -> None:
    store.create_item(1, "milk")
    store.create_item(1, "eggs")
    store.touch_session(1, "s-a", "pytest")

    resp = client.get("/lists/Alpha-Bravo-123")

    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == 1
    assert [i["text"] for i in data["items"]] == ["eggs", "milk"]
    assert [i["order"] for i in data["items"]] == [-1, 0]
    assert data["activeSessionsCount"] == 1


def test_get_unknown_list_is_404(client: TestClient) -> None:
    assert client.get("/lists/ghost-slug-000").status_code == 404


def test_password_protected_list(client: TestClient, store: DummyListStore) -> None:
    store.add_list("Kilo-Lima-500", password="secret")

    assert client.get("/lists/Kilo-Lima-500").status_code == 401
    assert client.get("/lists/Kilo-Lima-500", params={"password": "nope"}).status_code == 401
    resp = client.get("/lists/Kilo-Lima-500", params={"password": "secret"})
    assert resp.status_code == 200
    assert resp.json()["isPasswordProtected"] is True


def test_item_lifecycle(client: TestClient) -> None:
    created = client.post("/lists/1/items", json={"text": "milk"}).json()
    assert created["color"] == "primary"
    assert created["order"] == 0

    updated = client.patch(f"/items/{created['id']}", json={"completed": True}).json()
    assert updated["completed"] is True
    assert updated["text"] == "milk"

    assert client.post("/items/reorder", json={"updates": [{"id": created["id"], "order": 9}]}).json() == {"success": True}
    assert client.get("/lists/Alpha-Bravo-123").json()["items"][0]["order"] == 9

    assert client.delete(f"/items/{created['id']}").status_code == 200
    assert client.delete(f"/items/{created['id']}").status_code == 404
    assert client.patch(f"/items/{created['id']}", json={"text": "x"}).status_code == 404


def test_add_item_to_unknown_list_is_404(client: TestClient) -> None:
    assert client.post("/lists/999/items", json={"text": "milk"}).status_code == 404


def test_update_list_title(client: TestClient) -> None:
    resp = client.patch("/lists/1", json={"title": "Weekend"})

    assert resp.status_code == 200
    assert resp.json()["title"] == "Weekend"
    assert client.patch("/lists/999", json={"title": "x"}).status_code == 404


def test_session_routes(client: TestClient, store: DummyListStore) -> None:
    resp = client.post("/sessions/", json={"listId": 1, "sessionId": "s-a", "userAgent": "pytest"})
    assert resp.status_code == 200
    assert resp.json()["sessionId"] == "s-a"

    active = client.get("/sessions/1").json()
    assert [s["sessionId"] for s in active] == ["s-a"]

    assert client.delete("/sessions/s-a").status_code == 200
    assert client.delete("/sessions/s-a").status_code == 404


def test_session_store_outage_is_503(client: TestClient, store: DummyListStore) -> None:
    store.fail_sessions = True

    resp = client.post("/sessions/", json={"listId": 1, "sessionId": "s-a"})

    assert resp.status_code == 503


def ws_app(store: DummyListStore) -> FastAPI:
    test_app = FastAPI()
    test_app.add_api_websocket_route("/ws", app_module.websocket_endpoint)
    gateway = ConnectionGateway(store=store)
    test_app.dependency_overrides[app_module.get_gateway] = lambda: gateway
    return test_app


def test_websocket_join_relay_and_leave(store: DummyListStore) -> None:
    with TestClient(ws_app(store)) as client:
        with client.websocket_connect("/ws") as a:
            a.send_json({"event": "join-list", "data": {"listSlug": "Alpha-Bravo-123", "sessionId": "s-a"}})
            ack = a.receive_json()
            assert ack["event"] == "joined-list"
            assert ack["data"]["listId"] == 1

            with client.websocket_connect("/ws") as b:
                b.send_json({"event": "join-list", "data": {"listSlug": "Alpha-Bravo-123", "sessionId": "s-b"}})
                assert b.receive_json()["event"] == "joined-list"
                joined = a.receive_json()
                assert joined == {"event": "user-joined", "data": {"sessionId": "s-b", "timestamp": joined["data"]["timestamp"]}}

                a.send_json({"event": "item-added", "data": {"id": 7, "text": "milk", "order": 0}})
                for socket in (a, b):
                    frame = socket.receive_json()
                    assert frame["event"] == "update"
                    assert frame["data"]["type"] == "item-added"
                    assert frame["data"]["data"]["id"] == 7

            left = a.receive_json()
            assert left["event"] == "user-left"
            assert left["data"]["sessionId"] == "s-b"


def test_websocket_unknown_slug_gets_error(store: DummyListStore) -> None:
    with TestClient(ws_app(store)) as client:
        with client.websocket_connect("/ws") as ghost:
            ghost.send_text("not json")
            ghost.send_json({"event": "item-added", "data": {"id": 1}})
            ghost.send_json({"event": "join-list", "data": {"listSlug": "ghost-slug-000", "sessionId": "s-g"}})
            assert ghost.receive_json() == {"event": "error", "data": {"message": "List not found"}}


@pytest.mark.asyncio
async def test_api_client_round_trips_through_routes(store: DummyListStore) -> None:
    app_module.app.dependency_overrides[get_store] = lambda: store
    transport = httpx.ASGITransport(app=app_module.app)
    api = ListApiClient("http://testserver", client=httpx.AsyncClient(transport=transport, base_url="http://testserver"))
    try:
        created = await api.create_list(title="Camping")
        item = await api.add_item(created["id"], "tent", color="green")
        await api.update_item(item["id"], completed=True)
        await api.update_list(created["id"], title="Camping trip")

        fetched = await api.get_list(created["slug"])

        assert fetched["title"] == "Camping trip"
        assert fetched["items"][0]["listId"] == created["id"]
        assert fetched["items"][0]["completed"] is True
        with pytest.raises(httpx.HTTPStatusError):
            await api.get_list("ghost-slug-000")
    finally:
        await api.aclose()
        app_module.app.dependency_overrides.clear()
