from fastapi import APIRouter, Depends, HTTPException, Query, Request
from schemas.lists import (
    AddItemRequest,
    CreateListRequest,
    ListDetailsResponse,
    ListItem,
    ReorderItemsRequest,
    SharedList,
    SuccessResponse,
    UpdateItemRequest,
    UpdateListRequest,
)
import random
from backend import get_store
from constants import LIST_EXPIRY_SECONDS
from datetime import datetime, timedelta
from typing import Optional
from logging_config import get_logger

logger = get_logger(__name__)

lists_router = APIRouter(prefix="/lists", tags=["lists"])
items_router = APIRouter(prefix="/items", tags=["items"])

NATO_PHONETIC = [
    "Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf", "Hotel",
    "India", "Juliet", "Kilo", "Lima", "Mike", "November", "Oscar", "Papa",
    "Quebec", "Romeo", "Sierra", "Tango", "Uniform", "Victor", "Whiskey",
    "Xray", "Yankee", "Zulu",
]

SLUG_ATTEMPTS = 10


def generate_slug() -> str:
    # Alpha-Bravo-123
    return f"{random.choice(NATO_PHONETIC)}-{random.choice(NATO_PHONETIC)}-{random.randint(100, 999)}"


def to_shared_list(list_data: dict) -> SharedList:
    return SharedList(
        id=list_data["id"],
        slug=list_data["slug"],
        title=list_data["title"],
        description=list_data.get("description"),
        is_password_protected=bool(list_data.get("password")),
        created_at=list_data.get("created_at", ""),
        updated_at=list_data.get("updated_at", ""),
        expires_at=list_data.get("expires_at"),
    )


@lists_router.post("/", response_model=SharedList)
async def create_list(body: CreateListRequest, request: Request, store=Depends(get_store)):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"List creation request from {client_host}, title: {body.title}, expires_in: {body.expires_in}")
    ttl = LIST_EXPIRY_SECONDS.get(body.expires_in) if body.expires_in else None
    expires_at = (datetime.now() + timedelta(seconds=ttl)).isoformat() if ttl else None

    try:
        for _ in range(SLUG_ATTEMPTS):
            created = store.create_list(
                generate_slug(),
                title=body.title,
                description=body.description,
                password=body.password or None,
                ttl=ttl,
                expires_at=expires_at,
            )
            if created:
                logger.info(f"List {created['id']} created successfully: slug={created['slug']}, expires_at={expires_at}")
                return to_shared_list(created)
    except Exception as e:
        logger.error(f"Error creating list: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create list")

    logger.error(f"Could not find a free slug after {SLUG_ATTEMPTS} attempts")
    raise HTTPException(status_code=500, detail="Failed to create list")


@lists_router.get("/{slug}", response_model=ListDetailsResponse)
async def get_list_details(
    slug: str,
    password: Optional[str] = Query(None, description="List password (required if the list is password protected)"),
    store=Depends(get_store),
):
    """
    Get a list with all of its items and the number of active viewers.
    Password is required if the list is password protected.
    """
    logger.info(f"List details request for {slug}")

    list_data = store.get_list_by_slug(slug)
    if not list_data:
        logger.warning(f"List details failed: List {slug} not found")
        raise HTTPException(status_code=404, detail="List not found")

    list_password = list_data.get("password")
    if list_password:
        if not password:
            logger.warning(f"List details failed: Password required for list {slug}")
            raise HTTPException(status_code=401, detail="Password required for this list")
        if list_password != password:
            logger.warning(f"List details failed: Invalid password for list {slug}")
            raise HTTPException(status_code=401, detail="Invalid password")

    items = store.get_list_items(list_data["id"])
    active_sessions = store.get_active_sessions(list_data["id"])
    logger.info(f"List details retrieved for {slug}: {len(items)} items, {len(active_sessions)} active sessions")

    return ListDetailsResponse(
        **to_shared_list(list_data).model_dump(),
        items=[ListItem(**item) for item in items],
        active_sessions_count=len(active_sessions),
    )


@lists_router.patch("/{list_id}", response_model=SharedList)
async def update_list(list_id: int, body: UpdateListRequest, store=Depends(get_store)):
    updated = store.update_list(list_id, title=body.title, description=body.description)
    if not updated:
        logger.warning(f"Update list failed: List {list_id} not found")
        raise HTTPException(status_code=404, detail="List not found")
    return to_shared_list(updated)


@lists_router.post("/{list_id}/items", response_model=ListItem)
async def add_item(list_id: int, body: AddItemRequest, store=Depends(get_store)):
    item = store.create_item(list_id, body.text, body.color)
    if not item:
        logger.warning(f"Add item failed: List {list_id} not found")
        raise HTTPException(status_code=404, detail="List not found")
    return ListItem(**item)


@items_router.post("/reorder", response_model=SuccessResponse)
async def reorder_items(body: ReorderItemsRequest, store=Depends(get_store)):
    store.reorder_items([entry.model_dump() for entry in body.updates])
    logger.debug(f"Reordered {len(body.updates)} items")
    return SuccessResponse()


@items_router.patch("/{item_id}", response_model=ListItem)
async def update_item(item_id: int, body: UpdateItemRequest, store=Depends(get_store)):
    item = store.update_item(item_id, **body.model_dump(exclude_none=True))
    if not item:
        logger.warning(f"Update item failed: Item {item_id} not found")
        raise HTTPException(status_code=404, detail="Item not found")
    return ListItem(**item)


@items_router.delete("/{item_id}", response_model=SuccessResponse)
async def delete_item(item_id: int, store=Depends(get_store)):
    if not store.delete_item(item_id):
        logger.warning(f"Delete item failed: Item {item_id} not found")
        raise HTTPException(status_code=404, detail="Item not found")
    return SuccessResponse()
