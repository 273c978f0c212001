import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from parley.core import events
from parley.core.security import user_id_from_token
from parley.models.chat import ChatMember
from parley.models.user import User
from parley.websocket.manager import manager

logger = logging.getLogger(__name__)


async def _authenticate(websocket: WebSocket, db: Session) -> User | None:
    """Expect the first message to be {"type": "auth", "token": "<jwt>"}."""
    await websocket.accept()  # must accept before receive_text()
    try:
        raw = await websocket.receive_text()
        data = json.loads(raw)
    except Exception:
        await websocket.close(code=1008)
        return None

    if data.get("type") != "auth":
        await websocket.close(code=1008)
        return None

    user_id = user_id_from_token(data.get("token", ""))
    if user_id is None:
        await websocket.close(code=1008)
        return None

    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if not user:
        await websocket.close(code=1008)
        return None

    return user


async def _relay_typing(db: Session, user: User, chat_id: Any) -> None:
    try:
        chat_id = int(chat_id)
    except (TypeError, ValueError):
        return
    member_ids = [uid for (uid,) in db.query(ChatMember.user_id).filter(ChatMember.chat_id == chat_id).all()]
    if user.id not in member_ids:
        return
    payload = {"type": events.USER_TYPING, "data": {"chat_id": chat_id, "user_id": user.id, "name": user.name}}
    for uid in member_ids:
        if uid != user.id:
            await manager.send_to_user(uid, payload)


async def user_ws_handler(websocket: WebSocket, db: Session) -> None:
    """Full lifecycle handler for a user's push connection.

    After auth the socket mostly listens: every chat event for the user is
    pushed here.  Clients may send typing notices and keepalive pings.
    """
    user = await _authenticate(websocket, db)
    if user is None:
        return

    await manager.connect(websocket, user.id)
    await websocket.send_text(json.dumps({"type": "auth.ok", "data": {"user_id": user.id}}))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data: dict[str, Any] = json.loads(raw)
            except json.JSONDecodeError:
                continue

            event_type = data.get("type")
            try:
                if event_type == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
                elif event_type == events.USER_TYPING:
                    await _relay_typing(db, user, data.get("chat_id"))
            except Exception as exc:
                logger.error("Error handling event %r from user %s: %s", event_type, user.id, exc, exc_info=True)

    except WebSocketDisconnect:
        manager.disconnect(websocket, user.id)
