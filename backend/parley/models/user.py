from sqlalchemy import Boolean, Column, DateTime, Integer, String

from parley.database import Base, utcnow


class User(Base):
    """Identity record. Accounts are issued elsewhere; chats only need a
    stable id and something to call the person in the UI."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    display_name = Column(String(100), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def name(self) -> str:
        return self.display_name or self.username
