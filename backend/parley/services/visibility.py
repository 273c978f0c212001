"""
Per-viewer visibility overlay.

Messages are never removed.  A delete writes MessageDelete markers keyed by
(message, user); clearing a chat moves the user's ChatClearState watermark.
Readers join both to decide what each viewer sees.
"""

import logging
from collections import defaultdict

from sqlalchemy.orm import Session

from parley.core import events
from parley.core.errors import ForbiddenError, NotFoundError, ValidationFailed
from parley.database import transaction, upsert, utcnow
from parley.models.chat import ChatMember, ChatType
from parley.models.message import Message
from parley.models.visibility import ChatClearState, DeleteAction, MessageDelete
from parley.schemas.chat import DeleteMessagesResponse
from parley.services.message_store import get_chat_or_404
from parley.services.notifier import Notifier, notify_users, push_notifier

logger = logging.getLogger(__name__)


def delete_text(action: DeleteAction | str | None, deleted_by: int | None, viewer_id: int) -> str | None:
    """Placeholder shown instead of a deleted message's content."""
    if action is None:
        return None
    action = DeleteAction(action)
    if action is DeleteAction.SELF:
        return "You deleted this message"
    if action is DeleteAction.EVERYONE:
        if deleted_by == viewer_id:
            return "You deleted this message for everyone"
        return "This message was deleted"
    return None


def _messages_in_chat(db: Session, chat_id: int, message_ids: list[int] | None) -> list[Message]:
    ids = sorted(set(message_ids or []))
    if not ids:
        raise ValidationFailed("message_ids is required for this action")
    messages = db.query(Message).filter(Message.chat_id == chat_id, Message.id.in_(ids)).all()
    if len(messages) != len(ids):
        missing = sorted(set(ids) - {m.id for m in messages})
        raise NotFoundError(f"Messages not found in this chat: {', '.join(str(i) for i in missing)}")
    return messages


def _participants(db: Session, chat_ids) -> dict[int, list[int]]:
    result: dict[int, list[int]] = defaultdict(list)
    rows = db.query(ChatMember.chat_id, ChatMember.user_id).filter(ChatMember.chat_id.in_(list(chat_ids))).all()
    for chat_id, user_id in rows:
        result[chat_id].append(user_id)
    return result


def _upsert_marks(db: Session, marks: list[dict]) -> None:
    # One row per (message, user); the last mark for a pair wins
    unique = {(m["message_id"], m["user_id"]): m for m in marks}
    if not unique:
        return
    stmt = upsert(db, MessageDelete).values(list(unique.values()))
    stmt = stmt.on_conflict_do_update(
        index_elements=["message_id", "user_id"],
        set_={
            "delete_action": stmt.excluded.delete_action,
            "deleted_by": stmt.excluded.deleted_by,
            "deleted_at": stmt.excluded.deleted_at,
        },
    )
    db.execute(stmt)


def delete_messages(
    db: Session,
    *,
    chat_id: int,
    actor_id: int,
    action: DeleteAction | str,
    message_ids: list[int] | None = None,
    notifier: Notifier | None = None,
) -> DeleteMessagesResponse:
    """Hide messages for the actor, for everyone, or clear the whole chat.

    Repeating a call is harmless: markers and watermarks are upserted.
    """
    chat = get_chat_or_404(db, chat_id)
    notifier = notifier or push_notifier
    try:
        action = DeleteAction(action)
    except ValueError:
        raise ValidationFailed("Unsupported delete action") from None

    now = utcnow()
    marks: list[dict] = []
    affected_ids: list[int] = []

    def mark(message: Message, user_id: int) -> None:
        marks.append(
            {
                "message_id": message.id,
                "chat_id": message.chat_id,
                "user_id": user_id,
                "delete_action": action,
                "deleted_by": actor_id,
                "deleted_at": now,
            }
        )

    if action is DeleteAction.SELF:
        messages = _messages_in_chat(db, chat_id, message_ids)
        affected_ids = [m.id for m in messages]
        for message in messages:
            mark(message, actor_id)
        if chat.chat_type is ChatType.BROADCAST:
            children = (
                db.query(Message)
                .filter(Message.parent_message_id.in_(affected_ids), Message.sender_id == actor_id)
                .all()
            )
            for child in children:
                mark(child, actor_id)

    elif action is DeleteAction.EVERYONE:
        messages = _messages_in_chat(db, chat_id, message_ids)
        if any(m.sender_id != actor_id for m in messages):
            raise ForbiddenError("Only the sender can delete a message for everyone")
        affected_ids = [m.id for m in messages]
        members = _participants(db, [chat_id]).get(chat_id, [])
        for message in messages:
            for user_id in members:
                mark(message, user_id)
        if chat.chat_type is ChatType.BROADCAST:
            children = db.query(Message).filter(Message.parent_message_id.in_(affected_ids)).all()
            threads = _participants(db, {c.chat_id for c in children})
            for child in children:
                for user_id in threads.get(child.chat_id, []):
                    mark(child, user_id)

    elif action is DeleteAction.CLEAR_CHAT:
        stmt = upsert(db, ChatClearState).values(chat_id=chat_id, user_id=actor_id, cleared_at=now)
        stmt = stmt.on_conflict_do_update(index_elements=["chat_id", "user_id"], set_={"cleared_at": now})
        with transaction(db):
            db.execute(stmt)
        logger.info("User %s cleared chat %s", actor_id, chat_id)
        notify_users(
            notifier,
            [actor_id],
            events.MESSAGE_DELETED,
            {"action": action.value, "chat_id": chat_id, "message_ids": [], "deleted_by": actor_id},
        )
        return DeleteMessagesResponse(action=action, chat_id=chat_id, message_ids=[], affected_user_ids=[actor_id])

    else:
        raise ValidationFailed("Unsupported delete action")

    with transaction(db):
        _upsert_marks(db, marks)

    # Each user hears about the copies in their own chats
    per_thread: dict[tuple[int, int], set[int]] = defaultdict(set)
    for m in marks:
        per_thread[(m["user_id"], m["chat_id"])].add(m["message_id"])
    for (user_id, thread_id), ids in per_thread.items():
        notify_users(
            notifier,
            [user_id],
            events.MESSAGE_DELETED,
            {"action": action.value, "chat_id": thread_id, "message_ids": sorted(ids), "deleted_by": actor_id},
        )

    affected_users = sorted({m["user_id"] for m in marks})
    logger.info("User %s deleted %d message(s) in chat %s (%s)", actor_id, len(affected_ids), chat_id, action.value)
    return DeleteMessagesResponse(
        action=action,
        chat_id=chat_id,
        message_ids=affected_ids,
        affected_user_ids=affected_users,
    )
