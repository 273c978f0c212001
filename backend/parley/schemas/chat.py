from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from parley.models.chat import ChatType
from parley.models.visibility import DeleteAction
from parley.schemas.user import UserSummary


class ChatCreate(BaseModel):
    user_ids: list[int] = Field(..., min_length=1)
    chat_type: ChatType
    name: str | None = Field(None, max_length=100)

    @field_validator("name")
    @classmethod
    def blank_name_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class ChatResponse(BaseModel):
    id: int
    name: str | None = None
    chat_type: ChatType
    created_by: int
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ChatDetail(ChatResponse):
    # Broadcast chats list their recipients here, every other chat its members
    members: list[UserSummary] = []


class LastMessage(BaseModel):
    message_id: int
    body: str | None = None
    attachments: list[dict] = []
    created_at: datetime


class ChatListItem(BaseModel):
    chat_id: int
    chat_name: str | None = None
    chat_type: ChatType
    created_at: datetime
    updated_at: datetime | None = None
    members: list[UserSummary] = []
    last_message: LastMessage | None = None
    unread_count: int = 0
    is_pinned: bool = False


class PinRequest(BaseModel):
    pinned: bool = True


class DeleteMessagesRequest(BaseModel):
    action: DeleteAction
    message_ids: list[int] | None = None


class DeleteMessagesResponse(BaseModel):
    action: DeleteAction
    chat_id: int
    message_ids: list[int] = []
    affected_user_ids: list[int] = []


class ReadSummaryResponse(BaseModel):
    chat_id: int
    user_id: int
    last_read_message_id: int | None = None
    unread_count: int

    model_config = {"from_attributes": True}


class MemberStatus(BaseModel):
    user_id: int
    status: str  # "read" | "delivered"


class MessageStatusResponse(BaseModel):
    statuses: list[MemberStatus]
