"""
Message history with before / after / around cursors.

Pages are always returned newest first.  Every query fetches one row more
than requested; the extra row only tells us whether more history exists in
the direction of travel.
"""

from collections import defaultdict

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import ValidationFailed
from parley.models.chat import BroadcastRecipient, Chat, ChatMember, ChatType
from parley.models.message import Message, MessageAttachment, MessageKind, MessageReply, MessageSystemEvent
from parley.models.read_receipt import ReadReceipt
from parley.models.user import User
from parley.models.visibility import ChatClearState, MessageDelete
from parley.schemas.message import ChatMessage, MessagePage, PagingInfo, ReplyData, SystemData, SystemUser
from parley.services.chats import display_names
from parley.services.message_store import get_chat_or_404, user_display_name
from parley.services.visibility import delete_text


def get_messages(
    db: Session,
    *,
    chat_id: int,
    viewer_id: int,
    limit: int | None = None,
    before_id: int | None = None,
    after_id: int | None = None,
    around_id: int | None = None,
) -> MessagePage:
    if sum(c is not None for c in (before_id, after_id, around_id)) > 1:
        raise ValidationFailed("Only one of before_id, after_id or around_id may be given")
    if limit is None:
        limit = settings.DEFAULT_PAGE_SIZE
    if not 1 <= limit <= settings.MAX_PAGE_SIZE:
        raise ValidationFailed(f"limit must be between 1 and {settings.MAX_PAGE_SIZE}")

    chat = get_chat_or_404(db, chat_id)

    if around_id is not None:
        newer, has_newer = _fetch(db, chat_id, viewer_id, (limit + 1) // 2, after_id=around_id)
        target, _ = _fetch(db, chat_id, viewer_id, 1, equal_id=around_id)
        older, has_older = _fetch(db, chat_id, viewer_id, limit // 2, before_id=around_id)
        rows = newer + target + older
    elif after_id is not None:
        rows, has_newer = _fetch(db, chat_id, viewer_id, limit, after_id=after_id)
        has_older = False
    else:
        rows, has_older = _fetch(db, chat_id, viewer_id, limit, before_id=before_id)
        has_newer = False

    if not rows:
        return MessagePage(data=[], paging=PagingInfo(limit=limit))

    data = _render(db, chat, viewer_id, rows)
    return MessagePage(
        data=data,
        paging=PagingInfo(
            has_older=has_older,
            has_newer=has_newer,
            oldest_id=data[-1].id,
            newest_id=data[0].id,
            limit=limit,
        ),
    )


def _fetch(
    db: Session,
    chat_id: int,
    viewer_id: int,
    limit: int,
    *,
    before_id: int | None = None,
    after_id: int | None = None,
    equal_id: int | None = None,
) -> tuple[list, bool]:
    """Visible rows for *viewer_id*, newest first, plus an "exists beyond"
    flag."""
    query = (
        db.query(
            Message,
            user_display_name.label("sender_name"),
            MessageAttachment.attachments,
            MessageReply.reply_message_id,
            MessageDelete.delete_action,
            MessageDelete.deleted_by,
        )
        .outerjoin(User, User.id == Message.sender_id)
        .outerjoin(MessageAttachment, MessageAttachment.message_id == Message.id)
        .outerjoin(MessageReply, MessageReply.message_id == Message.id)
        .outerjoin(MessageDelete, and_(MessageDelete.message_id == Message.id, MessageDelete.user_id == viewer_id))
        .outerjoin(ChatClearState, and_(ChatClearState.chat_id == Message.chat_id, ChatClearState.user_id == viewer_id))
        .filter(
            Message.chat_id == chat_id,
            or_(ChatClearState.cleared_at.is_(None), Message.created_at > ChatClearState.cleared_at),
        )
    )

    if equal_id is not None:
        return query.filter(Message.id == equal_id).all(), False

    if after_id is not None:
        rows = query.filter(Message.id > after_id).order_by(Message.id.asc()).limit(limit + 1).all()
        has_extra = len(rows) > limit
        return list(reversed(rows[:limit])), has_extra

    if before_id is not None:
        query = query.filter(Message.id < before_id)
    rows = query.order_by(Message.id.desc()).limit(limit + 1).all()
    return rows[:limit], len(rows) > limit


def _render(db: Session, chat: Chat, viewer_id: int, rows: list) -> list[ChatMessage]:
    replies = _reply_targets(db, viewer_id, {row.reply_message_id for row in rows if row.reply_message_id})
    system = _system_data(db, [m.id for m, *_ in rows if m.kind is MessageKind.SYSTEM])
    audience, readers = _read_map(db, chat, [m.id for m, *_ in rows if m.kind is MessageKind.USER])
    names = display_names(db, audience)

    out = []
    for message, sender_name, attachments, reply_id, action, deleted_by in rows:
        item = ChatMessage(
            id=message.id,
            chat_id=message.chat_id,
            kind=message.kind.value,
            body=message.body,
            attachments=attachments or [],
            sender_id=message.sender_id,
            sender_name=sender_name,
            created_at=message.created_at,
            parent_message_id=message.parent_message_id,
            reply_message_id=reply_id,
            reply_data=replies.get(reply_id),
            system_data=system.get(message.id),
        )
        if action is not None:
            item.body = None
            item.attachments = None
            item.delete_action = action.value
            item.delete_text = delete_text(action, deleted_by, viewer_id)

        if message.kind is MessageKind.USER:
            seen = readers.get(message.id, set())
            others = [uid for uid in audience if uid != message.sender_id]
            item.read_by = [names[uid] for uid in others if uid in seen and uid in names]
            item.unread_by = [names[uid] for uid in others if uid not in seen and uid in names]
            item.seen_all = not item.unread_by
            item.read_status = "read" if item.seen_all else "unread"
        else:
            item.seen_all = True
            item.read_status = "read"
        out.append(item)
    return out


def _reply_targets(db: Session, viewer_id: int, ids: set[int]) -> dict[int, ReplyData]:
    if not ids:
        return {}
    rows = (
        db.query(Message, user_display_name, MessageAttachment.attachments, MessageDelete.id)
        .outerjoin(User, User.id == Message.sender_id)
        .outerjoin(MessageAttachment, MessageAttachment.message_id == Message.id)
        .outerjoin(MessageDelete, and_(MessageDelete.message_id == Message.id, MessageDelete.user_id == viewer_id))
        .filter(Message.id.in_(ids))
        .all()
    )
    result = {}
    for message, name, attachments, delete_id in rows:
        hidden = delete_id is not None
        result[message.id] = ReplyData(
            id=message.id,
            body=None if hidden else message.body,
            attachments=None if hidden else (attachments or []),
            sender_id=message.sender_id,
            sender_name=name,
            created_at=message.created_at,
        )
    return result


def _system_data(db: Session, message_ids: list[int]) -> dict[int, SystemData]:
    if not message_ids:
        return {}
    events = db.query(MessageSystemEvent).filter(MessageSystemEvent.message_id.in_(message_ids)).all()

    user_ids: set[int] = set()
    for ev in events:
        meta = ev.event_metadata or {}
        if meta.get("actor_id") is not None:
            user_ids.add(meta["actor_id"])
        user_ids.update(meta.get("target_user_ids") or [])
    names = display_names(db, user_ids)

    result = {}
    for ev in events:
        meta = ev.event_metadata or {}
        actor_id = meta.get("actor_id")
        targets = meta.get("target_user_ids")
        result[ev.message_id] = SystemData(
            event=ev.event.value,
            actor=SystemUser(user_id=actor_id, name=names.get(actor_id, "")),
            targets=[SystemUser(user_id=uid, name=names.get(uid, "")) for uid in targets] if targets else None,
        )
    return result


def _read_map(db: Session, chat: Chat, message_ids: list[int]) -> tuple[list[int], dict[int, set[int]]]:
    """Audience of *chat* and, per message, who has read it.

    Broadcast recipients read their own fan-out copy, so their receipts are
    attributed back to the canonical message.
    """
    readers: dict[int, set[int]] = defaultdict(set)
    if chat.chat_type is ChatType.BROADCAST:
        audience = [
            uid
            for (uid,) in db.query(BroadcastRecipient.recipient_id)
            .filter(BroadcastRecipient.chat_id == chat.id)
            .order_by(BroadcastRecipient.id)
            .all()
        ]
        if message_ids:
            rows = (
                db.query(Message.parent_message_id, ReadReceipt.user_id)
                .join(ReadReceipt, ReadReceipt.message_id == Message.id)
                .filter(Message.parent_message_id.in_(message_ids))
                .all()
            )
            for parent_id, user_id in rows:
                readers[parent_id].add(user_id)
    else:
        audience = [
            uid
            for (uid,) in db.query(ChatMember.user_id)
            .filter(ChatMember.chat_id == chat.id)
            .order_by(ChatMember.id)
            .all()
        ]
        if message_ids:
            rows = (
                db.query(ReadReceipt.message_id, ReadReceipt.user_id)
                .filter(ReadReceipt.message_id.in_(message_ids))
                .all()
            )
            for message_id, user_id in rows:
                readers[message_id].add(user_id)
    return audience, readers
