from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, require_chat_member
from parley.database import get_db
from parley.models.chat import Chat
from parley.models.user import User
from parley.schemas.chat import (
    ChatCreate,
    ChatDetail,
    ChatListItem,
    DeleteMessagesRequest,
    DeleteMessagesResponse,
    MessageStatusResponse,
    PinRequest,
    ReadSummaryResponse,
)
from parley.schemas.message import MessagePage, MessageResponse, SearchPage
from parley.schemas.user import UserSummary
from parley.services import chats as chat_service
from parley.services import pagination, read_state, search, visibility
from parley.services.messages import send_message
from parley.services.notifier import Notifier, get_notifier
from parley.storage import FileUpload, ObjectStore, get_object_store

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=List[ChatListItem])
async def list_chats(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[ChatListItem]:
    return chat_service.list_chats(db, user_id=current_user.id, limit=limit, offset=offset)


@router.get("/contacts", response_model=List[UserSummary])
async def list_contacts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[UserSummary]:
    return chat_service.conversation_contacts(db, current_user.id)


@router.post("", response_model=ChatDetail)
async def create_chat(
    chat_in: ChatCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ChatDetail:
    chat = chat_service.create_chat(
        db,
        creator_id=current_user.id,
        member_ids=chat_in.user_ids,
        chat_type=chat_in.chat_type,
        name=chat_in.name,
        notifier=notifier,
    )
    return chat_service.get_chat_detail(db, chat.id)


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat: Chat = Depends(require_chat_member),
    db: Session = Depends(get_db),
) -> ChatDetail:
    return chat_service.get_chat_detail(db, chat.id)


@router.put("/{chat_id}/pin")
async def pin_chat(
    pin_in: PinRequest,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    pinned = chat_service.pin_chat(db, chat_id=chat.id, user_id=current_user.id, pinned=pin_in.pinned)
    return {"chat_id": chat.id, "pinned": pinned}


@router.post("/{chat_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_message(
    body: str = Form(default=""),
    reply_to_id: Optional[int] = Form(default=None),
    files: List[UploadFile] = File(default=[]),
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    store: ObjectStore = Depends(get_object_store),
) -> MessageResponse:
    uploads = [
        FileUpload(
            filename=f.filename,
            content_type=f.content_type or "application/octet-stream",
            content=await f.read(),
        )
        for f in files
    ]
    return send_message(
        db,
        chat_id=chat.id,
        sender_id=current_user.id,
        body=body.strip(),
        files=uploads,
        reply_to_id=reply_to_id,
        notifier=notifier,
        store=store,
    )


@router.get("/{chat_id}/messages", response_model=MessagePage)
async def get_messages(
    limit: Optional[int] = Query(default=None),
    before_id: Optional[int] = Query(default=None),
    after_id: Optional[int] = Query(default=None),
    around_id: Optional[int] = Query(default=None),
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessagePage:
    return pagination.get_messages(
        db,
        chat_id=chat.id,
        viewer_id=current_user.id,
        limit=limit,
        before_id=before_id,
        after_id=after_id,
        around_id=around_id,
    )


@router.post("/{chat_id}/read", response_model=ReadSummaryResponse)
async def mark_read(
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ReadSummaryResponse:
    return read_state.mark_as_read(db, chat_id=chat.id, user_id=current_user.id, notifier=notifier)


@router.post("/{chat_id}/messages/delete", response_model=DeleteMessagesResponse)
async def delete_messages(
    delete_in: DeleteMessagesRequest,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> DeleteMessagesResponse:
    return visibility.delete_messages(
        db,
        chat_id=chat.id,
        actor_id=current_user.id,
        action=delete_in.action,
        message_ids=delete_in.message_ids,
        notifier=notifier,
    )


@router.get("/{chat_id}/messages/{message_id}/status", response_model=MessageStatusResponse)
async def message_status(
    message_id: int,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessageStatusResponse:
    return read_state.check_status(db, chat_id=chat.id, message_id=message_id, viewer_id=current_user.id)


@router.get("/{chat_id}/search", response_model=SearchPage)
async def search_messages(
    q: str = Query(..., min_length=1),
    limit: Optional[int] = Query(default=None),
    cursor: Optional[str] = Query(default=None),
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SearchPage:
    return search.search_messages(db, chat_id=chat.id, viewer_id=current_user.id, text=q, limit=limit, cursor=cursor)
