from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ReplyData(BaseModel):
    """Minimal snapshot of the replied-to message embedded in a reply."""

    id: int
    body: str | None = None
    attachments: list[dict] | None = None
    sender_id: int
    sender_name: str | None = None
    created_at: datetime | None = None


class SystemUser(BaseModel):
    user_id: int
    name: str


class SystemData(BaseModel):
    event: str
    actor: SystemUser
    targets: list[SystemUser] | None = None


class MessageResponse(BaseModel):
    """A freshly sent message, as returned to the sender and pushed to members."""

    id: int
    chat_id: int
    sender_id: int
    body: str | None = None
    kind: str
    created_at: datetime
    parent_message_id: int | None = None
    attachments: list[dict] = []
    reply_message_id: int | None = None
    reply_data: ReplyData | None = None
    # Broadcast fan-out outcome; empty for other chat types
    child_message_ids: list[int] = []
    failed_recipient_ids: list[int] = []


class ChatMessage(BaseModel):
    """One row of a history page, annotated for a specific viewer."""

    id: int
    chat_id: int
    kind: str
    body: str | None = None
    attachments: list[dict] | None = None
    sender_id: int
    sender_name: str | None = None
    created_at: datetime
    parent_message_id: int | None = None
    reply_message_id: int | None = None
    delete_action: str | None = None
    delete_text: str | None = None
    reply_data: ReplyData | None = None
    system_data: SystemData | None = None
    read_by: list[str] = []
    unread_by: list[str] = []
    read_status: Literal["read", "unread"] = "unread"
    seen_all: bool = False


class PagingInfo(BaseModel):
    has_older: bool = False
    has_newer: bool = False
    oldest_id: int | None = None
    newest_id: int | None = None
    limit: int


class MessagePage(BaseModel):
    data: list[ChatMessage]
    paging: PagingInfo


class SearchHit(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    body: str
    created_at: datetime


class SearchPage(BaseModel):
    data: list[SearchHit]
    next_cursor: str | None = None
