import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, UniqueConstraint

from parley.database import Base, utcnow


class DeleteAction(str, enum.Enum):
    SELF = "self"
    EVERYONE = "everyone"
    CLEAR_CHAT = "clear_chat"


class MessageDelete(Base):
    """Per-user hide marker. ``everyone`` deletes write one row per member,
    so every lookup is keyed on (message_id, user_id) alone."""

    __tablename__ = "chat_message_deletes"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Only "self" and "everyone" are stored; clear_chat writes a ChatClearState
    delete_action = Column(
        Enum(DeleteAction, name="message_delete_action", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    deleted_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    deleted_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_delete_user"),
        Index("ix_message_deletes_chat_user", "chat_id", "user_id"),
    )


class ChatClearState(Base):
    """Clear watermark: hides every message created at or before
    ``cleared_at`` from one user."""

    __tablename__ = "chat_clear_states"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    cleared_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_chat_clear_user"),)
