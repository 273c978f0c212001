"""
Chat provisioning and chat-level reads.

Three chat types share one table:
  single     two members, deduplicated per unordered pair
  group      creator + ≥2 members, announced by a group_created system message
  broadcast  creator is the only member; recipients are stored separately and
             receive each message in their single chat with the creator
"""

import logging

from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from parley.config import settings
from parley.core.errors import NotFoundError, ValidationFailed
from parley.database import transaction, upsert
from parley.models.chat import BroadcastRecipient, Chat, ChatMember, ChatPin, ChatType
from parley.models.message import Message, MessageAttachment, MessageKind, SystemEventType
from parley.models.read_receipt import UnreadSummary
from parley.models.user import User
from parley.models.visibility import ChatClearState, MessageDelete
from parley.schemas.chat import ChatDetail, ChatListItem, ChatResponse, LastMessage
from parley.schemas.user import UserSummary
from parley.services.dispatch import emit_message_sent
from parley.services.message_store import get_chat_or_404, insert_message, to_response, user_display_name
from parley.services.notifier import Notifier, push_notifier

logger = logging.getLogger(__name__)


def pair_key(a: int, b: int) -> str:
    low, high = (a, b) if a < b else (b, a)
    return f"{low}:{high}"


def display_names(db: Session, user_ids) -> dict[int, str]:
    ids = list(set(user_ids))
    if not ids:
        return {}
    rows = db.query(User.id, user_display_name).filter(User.id.in_(ids)).all()
    return {uid: name for uid, name in rows}


def generate_group_name(db: Session, member_ids: list[int], preview_count: int | None = None) -> str:
    """Name a chat after its first few members, e.g. ``"ana, ben, cy +2 more"``."""
    preview_count = preview_count or settings.GROUP_NAME_PREVIEW_COUNT
    names = display_names(db, member_ids)
    shown = [names[uid] for uid in member_ids if uid in names][:preview_count]
    remaining = len(member_ids) - len(shown)
    if remaining > 0:
        return f"{', '.join(shown)} +{remaining} more"
    return ", ".join(shown)


def member_ids(db: Session, chat_id: int) -> list[int]:
    rows = db.query(ChatMember.user_id).filter(ChatMember.chat_id == chat_id).order_by(ChatMember.id).all()
    return [uid for (uid,) in rows]


def recipient_ids(db: Session, chat_id: int) -> list[int]:
    rows = (
        db.query(BroadcastRecipient.recipient_id)
        .filter(BroadcastRecipient.chat_id == chat_id)
        .order_by(BroadcastRecipient.id)
        .all()
    )
    return [uid for (uid,) in rows]


def audience_ids(db: Session, chat: Chat) -> list[int]:
    """Users a message in *chat* is addressed to: recipients for a broadcast,
    members otherwise."""
    if chat.chat_type is ChatType.BROADCAST:
        return recipient_ids(db, chat.id)
    return member_ids(db, chat.id)


def is_member(db: Session, chat_id: int, user_id: int) -> bool:
    return (
        db.query(ChatMember.id).filter(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id).first()
        is not None
    )


def find_single_chat(db: Session, a: int, b: int) -> Chat | None:
    return db.query(Chat).filter(Chat.single_pair == pair_key(a, b)).first()


def get_or_create_single_chat(db: Session, a: int, b: int) -> tuple[Chat, bool]:
    """Return the single chat between *a* and *b*, creating it if needed.

    Flushes but does not commit. A concurrent creator surfaces as an
    IntegrityError on flush; callers retry the lookup.
    """
    existing = find_single_chat(db, a, b)
    if existing is not None:
        return existing, False

    chat = Chat(chat_type=ChatType.SINGLE, created_by=a, single_pair=pair_key(a, b))
    chat.members = [ChatMember(user_id=a), ChatMember(user_id=b)]
    db.add(chat)
    db.flush()
    return chat, True


def _other_members(creator_id: int, user_ids: list[int]) -> list[int]:
    others: list[int] = []
    for uid in user_ids:
        if uid != creator_id and uid not in others:
            others.append(uid)
    return others


def _ensure_users_exist(db: Session, user_ids: list[int]) -> None:
    found = {uid for (uid,) in db.query(User.id).filter(User.id.in_(user_ids), User.is_active == True).all()}  # noqa: E712
    missing = sorted(set(user_ids) - found)
    if missing:
        raise NotFoundError(f"User not found: {', '.join(str(uid) for uid in missing)}")


def create_chat(
    db: Session,
    *,
    creator_id: int,
    member_ids: list[int],
    chat_type: ChatType | str,
    name: str | None = None,
    notifier: Notifier | None = None,
) -> Chat:
    """Create (or, for single chats, find) a conversation.

    Everything is written in one transaction. Raises ValidationFailed for bad
    member counts or an unknown type and NotFoundError for unknown users.
    """
    try:
        chat_type = ChatType(chat_type)
    except ValueError:
        raise ValidationFailed("Unsupported chat type") from None

    others = _other_members(creator_id, member_ids)
    if chat_type is ChatType.SINGLE and len(others) != 1:
        raise ValidationFailed("Single chat requires exactly one other user")
    if chat_type is ChatType.GROUP and len(others) < 2:
        raise ValidationFailed("Group chat requires at least 2 other users")
    if chat_type is ChatType.BROADCAST and len(others) < 1:
        raise ValidationFailed("Broadcast requires at least one recipient")

    _ensure_users_exist(db, [creator_id, *others])

    system_message = None
    try:
        with transaction(db):
            if chat_type is ChatType.SINGLE:
                chat, created = get_or_create_single_chat(db, creator_id, others[0])
                if not created:
                    return chat
            elif chat_type is ChatType.GROUP:
                chat = Chat(
                    chat_type=chat_type,
                    created_by=creator_id,
                    name=name or generate_group_name(db, [*others, creator_id]),
                )
                chat.members = [ChatMember(user_id=uid) for uid in [creator_id, *others]]
                db.add(chat)
                db.flush()
                system_message, _ = insert_message(
                    db,
                    chat=chat,
                    sender_id=creator_id,
                    body="",
                    kind=MessageKind.SYSTEM,
                    event=SystemEventType.GROUP_CREATED,
                    metadata={"target_user_ids": others},
                )
            else:
                chat = Chat(
                    chat_type=chat_type,
                    created_by=creator_id,
                    name=name or generate_group_name(db, others),
                )
                chat.members = [ChatMember(user_id=creator_id)]
                chat.recipients = [BroadcastRecipient(recipient_id=uid) for uid in others]
                db.add(chat)
                db.flush()
    except IntegrityError:
        if chat_type is not ChatType.SINGLE:
            raise
        # Lost a race creating the same pair; the winner's chat is the answer.
        existing = find_single_chat(db, creator_id, others[0])
        if existing is None:
            raise
        return existing

    logger.info("Chat %s created (type=%s, creator=%s)", chat.id, chat_type.value, creator_id)
    if system_message is not None:
        emit_message_sent(db, notifier or push_notifier, to_response(system_message, [], None))
    return chat


def get_chat_detail(db: Session, chat_id: int) -> ChatDetail:
    chat = get_chat_or_404(db, chat_id)
    ids = audience_ids(db, chat)
    if chat.chat_type is ChatType.BROADCAST:
        ids = [chat.created_by, *ids]
    users = {u.id: u for u in db.query(User).filter(User.id.in_(ids)).all()} if ids else {}
    # chat.members holds ChatMember rows, so only the scalar columns are validated
    base = ChatResponse.model_validate(chat).model_dump()
    return ChatDetail(
        **base,
        members=[UserSummary.model_validate(users[uid]) for uid in ids if uid in users],
    )


def list_chats(db: Session, *, user_id: int, limit: int = 10, offset: int = 0) -> list[ChatListItem]:
    """Chats the user belongs to: pinned first, then most recent activity."""
    rows = (
        db.query(Chat, UnreadSummary.unread_count, ChatPin.id)
        .join(ChatMember, and_(ChatMember.chat_id == Chat.id, ChatMember.user_id == user_id))
        .outerjoin(UnreadSummary, and_(UnreadSummary.chat_id == Chat.id, UnreadSummary.user_id == user_id))
        .outerjoin(ChatPin, and_(ChatPin.chat_id == Chat.id, ChatPin.pinned_by == user_id))
        .order_by(
            case((ChatPin.id.isnot(None), 1), else_=0).desc(),
            Chat.updated_at.desc(),
            Chat.id.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    if not rows:
        return []

    chat_ids = [chat.id for chat, _, _ in rows]
    others = _participants_by_chat(db, chat_ids, exclude_user_id=user_id)
    last = _last_messages(db, chat_ids, viewer_id=user_id)

    return [
        ChatListItem(
            chat_id=chat.id,
            chat_name=chat.name,
            chat_type=chat.chat_type,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            members=others.get(chat.id, []),
            last_message=last.get(chat.id),
            unread_count=unread or 0,
            is_pinned=pin_id is not None,
        )
        for chat, unread, pin_id in rows
    ]


def _participants_by_chat(db: Session, chat_ids: list[int], exclude_user_id: int) -> dict[int, list[UserSummary]]:
    result: dict[int, list[UserSummary]] = {cid: [] for cid in chat_ids}
    member_rows = (
        db.query(ChatMember.chat_id, User)
        .join(User, User.id == ChatMember.user_id)
        .join(Chat, Chat.id == ChatMember.chat_id)
        .filter(
            ChatMember.chat_id.in_(chat_ids),
            ChatMember.user_id != exclude_user_id,
            Chat.chat_type != ChatType.BROADCAST,
        )
        .order_by(ChatMember.id)
        .all()
    )
    recipient_rows = (
        db.query(BroadcastRecipient.chat_id, User)
        .join(User, User.id == BroadcastRecipient.recipient_id)
        .filter(BroadcastRecipient.chat_id.in_(chat_ids))
        .order_by(BroadcastRecipient.id)
        .all()
    )
    for chat_id, user in [*member_rows, *recipient_rows]:
        result[chat_id].append(UserSummary.model_validate(user))
    return result


def _last_messages(db: Session, chat_ids: list[int], viewer_id: int) -> dict[int, LastMessage | None]:
    """Newest message per chat the viewer can see; None when it was deleted
    for them."""
    latest = (
        db.query(Message.chat_id.label("chat_id"), func.max(Message.id).label("message_id"))
        .outerjoin(
            ChatClearState,
            and_(ChatClearState.chat_id == Message.chat_id, ChatClearState.user_id == viewer_id),
        )
        .filter(
            Message.chat_id.in_(chat_ids),
            or_(ChatClearState.cleared_at.is_(None), Message.created_at > ChatClearState.cleared_at),
        )
        .group_by(Message.chat_id)
        .subquery()
    )
    rows = (
        db.query(Message, MessageAttachment.attachments, MessageDelete.id)
        .join(latest, latest.c.message_id == Message.id)
        .outerjoin(MessageAttachment, MessageAttachment.message_id == Message.id)
        .outerjoin(MessageDelete, and_(MessageDelete.message_id == Message.id, MessageDelete.user_id == viewer_id))
        .all()
    )
    result: dict[int, LastMessage | None] = {}
    for message, attachments, delete_id in rows:
        if delete_id is not None:
            result[message.chat_id] = None
            continue
        result[message.chat_id] = LastMessage(
            message_id=message.id,
            body=message.body,
            attachments=attachments or [],
            created_at=message.created_at,
        )
    return result


def pin_chat(db: Session, *, chat_id: int, user_id: int, pinned: bool) -> bool:
    get_chat_or_404(db, chat_id)
    with transaction(db):
        if pinned:
            stmt = upsert(db, ChatPin).values(chat_id=chat_id, pinned_by=user_id)
            db.execute(stmt.on_conflict_do_nothing(index_elements=["chat_id", "pinned_by"]))
        else:
            db.query(ChatPin).filter(ChatPin.chat_id == chat_id, ChatPin.pinned_by == user_id).delete(
                synchronize_session=False
            )
    return pinned


def conversation_contacts(db: Session, user_id: int) -> list[UserSummary]:
    """Everyone the user shares at least one chat with."""
    mine = aliased(ChatMember)
    theirs = aliased(ChatMember)
    users = (
        db.query(User)
        .join(theirs, theirs.user_id == User.id)
        .join(mine, mine.chat_id == theirs.chat_id)
        .filter(mine.user_id == user_id, theirs.user_id != user_id)
        .distinct()
        .order_by(User.id)
        .all()
    )
    return [UserSummary.model_validate(u) for u in users]
