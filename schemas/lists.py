from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Literal, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateListRequest(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    password: Optional[str] = None
    expires_in: Optional[Literal["1d", "1w", "1m", "inf"]] = None

class UpdateListRequest(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None

class AddItemRequest(CamelModel):
    text: str
    color: Optional[str] = None

class UpdateItemRequest(CamelModel):
    text: Optional[str] = None
    completed: Optional[bool] = None
    color: Optional[str] = None
    order: Optional[int] = None

class ReorderEntry(CamelModel):
    id: int
    order: int

class ReorderItemsRequest(CamelModel):
    updates: list[ReorderEntry]

class RegisterSessionRequest(CamelModel):
    list_id: int
    session_id: str
    user_agent: Optional[str] = None

class ListItem(CamelModel):
    id: int
    list_id: int
    text: str
    completed: bool = False
    color: Optional[str] = None
    order: int = 0
    created_at: str
    updated_at: str

class SharedList(CamelModel):
    id: int
    slug: str
    title: str
    description: Optional[str] = None
    is_password_protected: bool = False
    created_at: str
    updated_at: str
    expires_at: Optional[str] = None

class ListDetailsResponse(SharedList):
    items: list[ListItem] = []
    active_sessions_count: int = 0

class SessionRecord(CamelModel):
    list_id: int
    session_id: str
    user_agent: Optional[str] = None
    last_activity: str
    created_at: str

class SuccessResponse(CamelModel):
    success: bool = True
