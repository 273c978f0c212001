"""
Read receipts and the per-chat unread counter.

Receipts answer "who read message M"; UnreadSummary answers "how many unread
messages does U have in chat C" without counting receipts.  Both are written
with conflict-resolving upserts so replays are harmless.
"""

import logging

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from parley.core import events
from parley.core.errors import NotFoundError
from parley.core.events import EventContext, MessageSent
from parley.database import transaction, upsert, utcnow
from parley.models.chat import BroadcastRecipient, ChatMember, ChatType
from parley.models.message import Message, MessageKind
from parley.models.read_receipt import ReadReceipt, UnreadSummary
from parley.schemas.chat import MemberStatus, MessageStatusResponse, ReadSummaryResponse
from parley.services.message_store import get_chat_or_404
from parley.services.notifier import Notifier, notify_users, push_notifier

logger = logging.getLogger(__name__)


def on_message_sent(ctx: EventContext, event: MessageSent) -> None:
    if event.kind != MessageKind.USER.value:
        return

    db = ctx.db
    now = utcnow()

    own_receipt = (
        upsert(db, ReadReceipt)
        .values(message_id=event.message_id, chat_id=event.chat_id, user_id=event.sender_id, read_at=now)
        .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
    )
    if db.execute(own_receipt).rowcount == 0:
        logger.info("Duplicate MessageSent for message %s ignored", event.message_id)
        db.rollback()
        return

    members = [uid for (uid,) in db.query(ChatMember.user_id).filter(ChatMember.chat_id == event.chat_id).all()]
    if members:
        stmt = upsert(db, UnreadSummary).values(
            [
                {
                    "chat_id": event.chat_id,
                    "user_id": uid,
                    "unread_count": 0 if uid == event.sender_id else 1,
                    "last_read_message_id": event.message_id if uid == event.sender_id else None,
                    "last_read_at": now if uid == event.sender_id else None,
                    "updated_at": now,
                }
                for uid in members
            ]
        )
        is_sender = stmt.excluded.user_id == event.sender_id
        stmt = stmt.on_conflict_do_update(
            index_elements=["chat_id", "user_id"],
            set_={
                "unread_count": case((is_sender, 0), else_=UnreadSummary.unread_count + 1),
                "last_read_message_id": case(
                    (is_sender, stmt.excluded.last_read_message_id),
                    else_=UnreadSummary.last_read_message_id,
                ),
                "last_read_at": case((is_sender, stmt.excluded.last_read_at), else_=UnreadSummary.last_read_at),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)

    db.commit()


def mark_as_read(
    db: Session,
    *,
    chat_id: int,
    user_id: int,
    notifier: Notifier | None = None,
) -> ReadSummaryResponse:
    """Mark everything up to the newest user message as read by *user_id*."""
    get_chat_or_404(db, chat_id)
    notifier = notifier or push_notifier
    now = utcnow()

    candidate = (
        db.query(func.max(Message.id))
        .filter(Message.chat_id == chat_id, Message.kind == MessageKind.USER)
        .scalar()
    )

    with transaction(db):
        if candidate is not None:
            unread = (
                db.query(Message.id)
                .outerjoin(
                    ReadReceipt,
                    and_(ReadReceipt.message_id == Message.id, ReadReceipt.user_id == user_id),
                )
                .filter(
                    Message.chat_id == chat_id,
                    Message.kind == MessageKind.USER,
                    Message.sender_id != user_id,
                    Message.id <= candidate,
                    ReadReceipt.id.is_(None),
                )
                .all()
            )
            if unread:
                db.execute(
                    upsert(db, ReadReceipt)
                    .values(
                        [
                            {"message_id": mid, "chat_id": chat_id, "user_id": user_id, "read_at": now}
                            for (mid,) in unread
                        ]
                    )
                    .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
                )

        changes = {"unread_count": 0, "last_read_at": now, "updated_at": now}
        if candidate is not None:
            changes["last_read_message_id"] = candidate
        db.execute(
            upsert(db, UnreadSummary)
            .values(chat_id=chat_id, user_id=user_id, **changes)
            .on_conflict_do_update(index_elements=["chat_id", "user_id"], set_=changes)
        )

    summary = (
        db.query(UnreadSummary).filter(UnreadSummary.chat_id == chat_id, UnreadSummary.user_id == user_id).one()
    )

    members = [uid for (uid,) in db.query(ChatMember.user_id).filter(ChatMember.chat_id == chat_id).all()]
    notify_users(
        notifier,
        members,
        events.MESSAGE_READ,
        {"chat_id": chat_id, "seen_by": user_id, "last_read_message_id": summary.last_read_message_id},
    )
    return ReadSummaryResponse.model_validate(summary)


def check_status(db: Session, *, chat_id: int, message_id: int, viewer_id: int) -> MessageStatusResponse:
    """Per-member read/delivered state of one message.

    Broadcast recipients never see the canonical message, so their status is
    taken from the copy fanned out into their private chat.
    """
    chat = get_chat_or_404(db, chat_id)
    message = db.query(Message).filter(Message.id == message_id, Message.chat_id == chat_id).first()
    if message is None:
        raise NotFoundError("Message not found")

    if chat.chat_type is ChatType.BROADCAST:
        audience = [
            uid
            for (uid,) in db.query(BroadcastRecipient.recipient_id)
            .filter(BroadcastRecipient.chat_id == chat_id)
            .order_by(BroadcastRecipient.id)
            .all()
        ]
        readers = {
            uid
            for (uid,) in db.query(ReadReceipt.user_id)
            .join(Message, Message.id == ReadReceipt.message_id)
            .filter(Message.parent_message_id == message_id)
            .all()
        }
    else:
        audience = [
            uid
            for (uid,) in db.query(ChatMember.user_id)
            .filter(ChatMember.chat_id == chat_id)
            .order_by(ChatMember.id)
            .all()
        ]
        readers = {uid for (uid,) in db.query(ReadReceipt.user_id).filter(ReadReceipt.message_id == message_id).all()}

    return MessageStatusResponse(
        statuses=[
            MemberStatus(user_id=uid, status="read" if uid in readers else "delivered")
            for uid in audience
            if uid != viewer_id
        ]
    )
