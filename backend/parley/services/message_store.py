"""
Row-level message writes shared by provisioning, sending and fan-out.

Nothing here commits: callers own the transaction so that a chat, its
system message and its memberships land together (or not at all).
"""

from sqlalchemy import func
from sqlalchemy.orm import Session

from parley.core.errors import NotFoundError
from parley.models.chat import Chat
from parley.models.message import Message, MessageAttachment, MessageKind, MessageReply, MessageSystemEvent, SystemEventType
from parley.models.user import User
from parley.schemas.message import MessageResponse, ReplyData

user_display_name = func.coalesce(User.display_name, User.username)


def get_chat_or_404(db: Session, chat_id: int) -> Chat:
    chat = db.query(Chat).filter(Chat.id == chat_id).first()
    if not chat:
        raise NotFoundError("Chat not found")
    return chat


def load_reply(db: Session, chat_id: int, reply_to_id: int) -> ReplyData:
    """Fetch the replied-to message; it must live in the same chat."""
    row = (
        db.query(Message, user_display_name.label("sender_name"), MessageAttachment.attachments)
        .outerjoin(User, User.id == Message.sender_id)
        .outerjoin(MessageAttachment, MessageAttachment.message_id == Message.id)
        .filter(Message.id == reply_to_id, Message.chat_id == chat_id)
        .first()
    )
    if not row:
        raise NotFoundError("Message to reply to not found in this chat")
    message, name, attachments = row
    return ReplyData(
        id=message.id,
        body=message.body,
        attachments=attachments or [],
        sender_id=message.sender_id,
        sender_name=name,
        created_at=message.created_at,
    )


def insert_message(
    db: Session,
    *,
    chat: Chat,
    sender_id: int,
    body: str | None = "",
    kind: MessageKind = MessageKind.USER,
    attachments: list[dict] | None = None,
    reply_to_id: int | None = None,
    event: SystemEventType | None = None,
    metadata: dict | None = None,
    parent_message_id: int | None = None,
) -> tuple[Message, ReplyData | None]:
    """Insert one message with its attachment set, reply link and system event.

    Flushes so the store-assigned id is available; does not commit.
    """
    reply = load_reply(db, chat.id, reply_to_id) if reply_to_id is not None else None

    message = Message(
        chat_id=chat.id,
        sender_id=sender_id,
        body=body,
        kind=kind,
        parent_message_id=parent_message_id,
    )
    db.add(message)
    db.flush()

    if attachments:
        db.add(
            MessageAttachment(
                message_id=message.id,
                chat_id=chat.id,
                added_by=sender_id,
                attachments=list(attachments),
            )
        )

    if reply is not None:
        db.add(MessageReply(message_id=message.id, chat_id=chat.id, reply_message_id=reply.id))

    if kind is MessageKind.SYSTEM and event is not None:
        db.add(
            MessageSystemEvent(
                chat_id=chat.id,
                message_id=message.id,
                event=event,
                event_metadata={"actor_id": sender_id, **(metadata or {})},
            )
        )

    db.flush()
    return message, reply


def to_response(message: Message, attachments: list[dict] | None, reply: ReplyData | None) -> MessageResponse:
    kind = message.kind.value if isinstance(message.kind, MessageKind) else message.kind
    return MessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        body=message.body,
        kind=kind,
        created_at=message.created_at,
        parent_message_id=message.parent_message_id,
        attachments=list(attachments or []),
        reply_message_id=reply.id if reply else None,
        reply_data=reply,
    )
