import logging

from parley.core import events
from parley.core.events import EventContext, MessageSent
from parley.models.chat import ChatMember
from parley.services.notifier import notify_users

logger = logging.getLogger(__name__)


def on_message_sent(ctx: EventContext, event: MessageSent) -> None:
    """Push the new message to every member of its chat, the sender's other
    devices included."""
    rows = ctx.db.query(ChatMember.user_id).filter(ChatMember.chat_id == event.chat_id).all()
    user_ids = [uid for (uid,) in rows]
    logger.debug("Pushing message %s to %d member(s)", event.message_id, len(user_ids))
    notify_users(ctx.notifier, user_ids, events.MESSAGE_NEW, event.payload)
