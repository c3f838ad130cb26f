import httpx
from typing import Optional
from logging_config import get_logger

logger = get_logger(__name__)


class ListApiClient:
    """Thin async client for the list CRUD routes.

    Every mutation returns the record as committed by the server; that record
    is what the sync agent relays to the room.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs):
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    async def create_list(self, title: Optional[str] = None, password: Optional[str] = None, expires_in: Optional[str] = None) -> dict:
        body = {"title": title, "password": password, "expiresIn": expires_in}
        return await self._request("POST", "/lists/", json={k: v for k, v in body.items() if v is not None})

    async def get_list(self, slug: str, password: Optional[str] = None) -> dict:
        params = {"password": password} if password else None
        return await self._request("GET", f"/lists/{slug}", params=params)

    async def update_list(self, list_id: int, title: Optional[str] = None, description: Optional[str] = None) -> dict:
        body = {"title": title, "description": description}
        return await self._request("PATCH", f"/lists/{list_id}", json={k: v for k, v in body.items() if v is not None})

    async def add_item(self, list_id: int, text: str, color: Optional[str] = None) -> dict:
        body = {"text": text}
        if color:
            body["color"] = color
        return await self._request("POST", f"/lists/{list_id}/items", json=body)

    async def update_item(self, item_id: int, **changes) -> dict:
        body = {k: v for k, v in changes.items() if v is not None}
        return await self._request("PATCH", f"/items/{item_id}", json=body)

    async def delete_item(self, item_id: int) -> dict:
        return await self._request("DELETE", f"/items/{item_id}")

    async def reorder_items(self, updates: list) -> dict:
        return await self._request("POST", "/items/reorder", json={"updates": updates})

    async def aclose(self) -> None:
        await self._client.aclose()
