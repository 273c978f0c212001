import enum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from parley.database import Base, utcnow


class MessageKind(str, enum.Enum):
    USER = "user"
    SYSTEM = "system"


class SystemEventType(str, enum.Enum):
    GROUP_CREATED = "group_created"
    USERS_ADDED = "users_added"
    USER_REMOVED = "user_removed"
    USER_LEFT = "user_left"
    GROUP_NAME_CHANGED = "group_name_changed"
    GROUP_AVATAR_CHANGED = "group_avatar_changed"
    MESSAGE_PINNED = "message_pinned"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Message(Base):
    """One row in the shared message log.

    Rows are never updated or removed by delete/clear operations; those add
    per-user overlays instead. ``id`` is the only sort and cursor key.
    """

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    body = Column(Text, nullable=True, default="")
    kind = Column(
        Enum(MessageKind, name="message_kind", values_callable=_enum_values),
        nullable=False,
        default=MessageKind.USER,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
    # Set only on broadcast fan-out copies: points at the canonical broadcast row
    parent_message_id = Column(
        Integer,
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    sender = relationship("User", foreign_keys=[sender_id])

    __table_args__ = (Index("ix_chat_messages_chat_created", "chat_id", "created_at"),)


class MessageAttachment(Base):
    """Opaque object-store descriptors for one message.

    Fan-out copies store the same descriptors as their canonical message.
    """

    __tablename__ = "chat_message_attachments"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    added_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class MessageReply(Base):
    __tablename__ = "chat_message_replies"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, unique=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    reply_message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class MessageSystemEvent(Base):
    __tablename__ = "chat_message_system_events"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False)
    event = Column(Enum(SystemEventType, name="system_event", values_callable=_enum_values), nullable=False)
    # {"actor_id": int, "target_user_ids": [int], "old_value": str, "new_value": str}
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("message_id", name="uq_system_event_message"),)
