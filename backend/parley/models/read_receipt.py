from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, UniqueConstraint

from parley.database import Base, utcnow


class ReadReceipt(Base):
    """One row per (message, user) once the user has read the message.
    Absence means unread."""

    __tablename__ = "chat_message_read_receipts"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_read_receipt_message_user"),
        Index("ix_read_receipts_chat_user", "chat_id", "user_id"),
    )


class UnreadSummary(Base):
    """Aggregated unread counter per (chat, user).

    Maintained incrementally by the message-sent consumer and reset by
    mark-as-read, so chat lists never have to count receipts.
    """

    __tablename__ = "chat_read_summaries"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_read_message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True)
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_read_summary_chat_user"),)
