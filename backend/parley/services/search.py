import base64
import binascii
import json
from datetime import datetime

from pydantic import BaseModel, ValidationError
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import ValidationFailed
from parley.models.message import Message, MessageKind
from parley.models.visibility import ChatClearState, MessageDelete
from parley.schemas.message import SearchHit, SearchPage
from parley.services.message_store import get_chat_or_404


class SearchCursor(BaseModel):
    created_at: datetime
    id: int


def encode_cursor(created_at: datetime, message_id: int) -> str:
    raw = SearchCursor(created_at=created_at, id=message_id).model_dump_json()
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> SearchCursor:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode())
        return SearchCursor.model_validate(json.loads(raw))
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError):
        raise ValidationFailed("Invalid search cursor") from None


def search_messages(
    db: Session,
    *,
    chat_id: int,
    viewer_id: int,
    text: str,
    limit: int | None = None,
    cursor: str | None = None,
) -> SearchPage:
    """Case-insensitive substring search over the user messages the viewer
    can still see, newest first."""
    text = (text or "").strip()
    if not text:
        raise ValidationFailed("Search text is required")
    if limit is None:
        limit = settings.DEFAULT_PAGE_SIZE
    if not 1 <= limit <= settings.MAX_PAGE_SIZE:
        raise ValidationFailed(f"limit must be between 1 and {settings.MAX_PAGE_SIZE}")
    after = decode_cursor(cursor) if cursor else None

    get_chat_or_404(db, chat_id)

    # LIKE wildcards in the user's text are matched literally
    pattern = "%" + text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    query = (
        db.query(Message)
        .outerjoin(MessageDelete, and_(MessageDelete.message_id == Message.id, MessageDelete.user_id == viewer_id))
        .outerjoin(ChatClearState, and_(ChatClearState.chat_id == Message.chat_id, ChatClearState.user_id == viewer_id))
        .filter(
            Message.chat_id == chat_id,
            Message.kind == MessageKind.USER,
            Message.body.ilike(pattern, escape="\\"),
            MessageDelete.id.is_(None),
            or_(ChatClearState.cleared_at.is_(None), Message.created_at > ChatClearState.cleared_at),
        )
    )
    if after is not None:
        query = query.filter(
            or_(
                Message.created_at < after.created_at,
                and_(Message.created_at == after.created_at, Message.id < after.id),
            )
        )

    rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit + 1).all()
    page = rows[:limit]
    next_cursor = encode_cursor(page[-1].created_at, page[-1].id) if len(rows) > limit else None

    return SearchPage(
        data=[
            SearchHit(id=m.id, chat_id=m.chat_id, sender_id=m.sender_id, body=m.body or "", created_at=m.created_at)
            for m in page
        ],
        next_cursor=next_cursor,
    )
