import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from parley.database import Base, utcnow


class ChatType(str, enum.Enum):
    SINGLE = "single"
    GROUP = "group"
    BROADCAST = "broadcast"


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    # NULL for single chats; generated from member names for group/broadcast
    name = Column(String(100), nullable=True)
    chat_type = Column(Enum(ChatType, name="chat_type", values_callable=lambda e: [m.value for m in e]), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # "low:high" user ids for single chats, NULL otherwise. The unique index
    # keeps one single chat per pair even when two requests race.
    single_pair = Column(String(50), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    # Bumped on every new message so chat lists can sort by activity
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = relationship("User", foreign_keys=[created_by])
    members = relationship("ChatMember", back_populates="chat", cascade="all, delete-orphan")
    recipients = relationship("BroadcastRecipient", back_populates="chat", cascade="all, delete-orphan")


class ChatMember(Base):
    """Membership row. For broadcast chats only the creator is a member."""

    __tablename__ = "chat_members"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    chat = relationship("Chat", back_populates="members")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_chat_member"),)


class BroadcastRecipient(Base):
    """A broadcast audience entry. Recipients are not members of the broadcast
    chat; each one receives the message in a single chat with the sender."""

    __tablename__ = "broadcast_recipients"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    chat = relationship("Chat", back_populates="recipients")
    recipient = relationship("User")

    __table_args__ = (UniqueConstraint("chat_id", "recipient_id", name="uq_broadcast_recipient"),)


class ChatPin(Base):
    __tablename__ = "chat_pins"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    pinned_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    pinned_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("chat_id", "pinned_by", name="uq_chat_pin"),)
