from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from parley.database import Base, utcnow

# Valid status values
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class ScheduledMessage(Base):
    """A message to be sent by the scheduler once ``scheduled_at`` passes.

    Workers claim a row by flipping ``status`` from pending to processing
    with a conditional UPDATE; whoever gets the row back owns it.
    """

    __tablename__ = "chat_message_schedules"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    # status: "pending" | "processing" | "completed" | "failed"
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
