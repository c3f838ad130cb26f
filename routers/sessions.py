from fastapi import APIRouter, Depends, HTTPException
from schemas.lists import RegisterSessionRequest, SessionRecord, SuccessResponse
from backend import get_store
from errors import PersistenceUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

sessions_router = APIRouter(prefix="/sessions", tags=["sessions"])


@sessions_router.post("/", response_model=SessionRecord)
async def register_session(body: RegisterSessionRequest, store=Depends(get_store)):
    try:
        session = store.touch_session(body.list_id, body.session_id, body.user_agent)
    except PersistenceUnavailable as e:
        logger.error(f"Register session failed: {e.message}")
        raise HTTPException(status_code=503, detail="Failed to register session")
    return SessionRecord(**session)


@sessions_router.get("/{list_id}", response_model=list[SessionRecord])
async def get_active_sessions(list_id: int, store=Depends(get_store)):
    """Sessions of `list_id` seen within the active window."""
    return [SessionRecord(**session) for session in store.get_active_sessions(list_id)]


@sessions_router.delete("/{session_id}", response_model=SuccessResponse)
async def unregister_session(session_id: str, store=Depends(get_store)):
    try:
        removed = store.remove_session(session_id)
    except PersistenceUnavailable as e:
        logger.error(f"Unregister session failed: {e.message}")
        raise HTTPException(status_code=503, detail="Failed to unregister session")
    if not removed:
        raise HTTPException(status_code=404, detail="Session not found")
    return SuccessResponse()
