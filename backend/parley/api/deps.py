from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parley.core.security import user_id_from_token
from parley.database import get_db
from parley.models.chat import Chat, ChatMember
from parley.models.user import User

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    user_id = user_id_from_token(credentials.credentials)
    user = None
    if user_id is not None:
        user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    return user


def require_chat_member(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Chat:
    """
    Verifies the current user is a member of chat_id and returns the chat.
    Raises 404 if the chat doesn't exist, 403 if the user is not a member.
    Broadcast recipients are not members: they read the copies in their own
    single chats.
    """
    chat = db.query(Chat).filter(Chat.id == chat_id).first()
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")

    membership = (
        db.query(ChatMember.id)
        .filter(ChatMember.chat_id == chat_id, ChatMember.user_id == current_user.id)
        .first()
    )
    if not membership:
        raise HTTPException(status_code=403, detail="You are not a member of this chat")

    return chat
