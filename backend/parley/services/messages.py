"""
Sending messages, including broadcast fan-out.

A broadcast message is stored once in the broadcast chat (the canonical row)
and copied into the private single chat between the sender and each
recipient.  Copies point back at the canonical row via parent_message_id.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.core.errors import ValidationFailed
from parley.database import transaction, utcnow
from parley.models.chat import Chat, ChatType
from parley.models.message import Message, MessageKind, SystemEventType
from parley.schemas.message import MessageResponse
from parley.services.chats import get_or_create_single_chat, recipient_ids
from parley.services.dispatch import emit_message_sent
from parley.services.message_store import get_chat_or_404, insert_message, to_response
from parley.services.notifier import Notifier, push_notifier
from parley.storage import FileUpload, ObjectStore, get_object_store

logger = logging.getLogger(__name__)


def upload_files(store: ObjectStore, chat_id: int, files: list[FileUpload]) -> list[dict]:
    """Upload every file or none: the first failure aborts the send."""
    return [
        store.upload(f.content, f.content_type, folder=f"chats/{chat_id}", filename=f.filename)
        for f in files
    ]


def send_message(
    db: Session,
    *,
    chat_id: int,
    sender_id: int,
    body: str | None = "",
    files: list[FileUpload] | None = None,
    reply_to_id: int | None = None,
    kind: MessageKind = MessageKind.USER,
    event: SystemEventType | None = None,
    metadata: dict | None = None,
    reuse_attachments: list[dict] | None = None,
    notifier: Notifier | None = None,
    store: ObjectStore | None = None,
) -> MessageResponse:
    chat = get_chat_or_404(db, chat_id)
    notifier = notifier or push_notifier

    if kind is MessageKind.USER and not (body or "").strip() and not files and not reuse_attachments:
        raise ValidationFailed("Message must have a body or at least one attachment")
    if kind is MessageKind.SYSTEM and event is None:
        raise ValidationFailed("System messages require an event")

    if reuse_attachments is not None:
        attachments = list(reuse_attachments)
    elif files:
        attachments = upload_files(store or get_object_store(), chat.id, files)
    else:
        attachments = []

    with transaction(db):
        message, reply = insert_message(
            db,
            chat=chat,
            sender_id=sender_id,
            body=body,
            kind=kind,
            attachments=attachments,
            reply_to_id=reply_to_id,
            event=event,
            metadata=metadata,
        )
        chat.updated_at = utcnow()

    response = to_response(message, attachments, reply)
    emit_message_sent(db, notifier, response)

    if chat.chat_type is ChatType.BROADCAST and kind is MessageKind.USER:
        children, failed = _fan_out(db, chat, message, attachments, notifier)
        response.child_message_ids = children
        response.failed_recipient_ids = failed

    return response


def _fan_out(
    db: Session,
    chat: Chat,
    canonical: Message,
    attachments: list[dict],
    notifier: Notifier,
) -> tuple[list[int], list[int]]:
    """Copy *canonical* into each recipient's private chat with the sender.

    Each recipient gets its own transaction; a failure is rolled back and
    reported for that recipient only.
    """
    children: list[int] = []
    failed: list[int] = []

    for recipient_id in recipient_ids(db, chat.id):
        try:
            child = _deliver_copy(db, canonical, recipient_id, attachments)
        except Exception:
            logger.exception("Broadcast %s: fan-out to user %s failed", canonical.id, recipient_id)
            failed.append(recipient_id)
            continue
        children.append(child.id)
        emit_message_sent(db, notifier, to_response(child, attachments, None))

    if failed:
        logger.warning(
            "Broadcast %s delivered to %d of %d recipient(s)",
            canonical.id,
            len(children),
            len(children) + len(failed),
        )
    return children, failed


def _deliver_copy(db: Session, canonical: Message, recipient_id: int, attachments: list[dict]) -> Message:
    try:
        return _insert_copy(db, canonical, recipient_id, attachments)
    except IntegrityError:
        # A concurrent request created the same single chat; the retry finds it
        logger.info("Single chat race for users %s/%s, retrying", canonical.sender_id, recipient_id)
        return _insert_copy(db, canonical, recipient_id, attachments)


def _insert_copy(db: Session, canonical: Message, recipient_id: int, attachments: list[dict]) -> Message:
    with transaction(db):
        single, _ = get_or_create_single_chat(db, canonical.sender_id, recipient_id)
        child, _ = insert_message(
            db,
            chat=single,
            sender_id=canonical.sender_id,
            body=canonical.body,
            attachments=attachments,
            parent_message_id=canonical.id,
        )
        single.updated_at = utcnow()
    return child
