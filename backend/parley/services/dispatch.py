"""Wires MessageSent consumers to the process-wide event bus."""

from sqlalchemy.orm import Session

from parley.core.events import EventBus, EventContext, MessageSent
from parley.schemas.message import MessageResponse
from parley.services import delivery, read_state
from parley.services.notifier import Notifier

event_bus = EventBus()
event_bus.subscribe(MessageSent, read_state.on_message_sent)
event_bus.subscribe(MessageSent, delivery.on_message_sent)


def emit_message_sent(db: Session, notifier: Notifier, message: MessageResponse) -> MessageSent:
    """Announce a committed message to every consumer."""
    event = MessageSent(
        message_id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        kind=message.kind,
        payload=message.model_dump(mode="json"),
    )
    event_bus.emit(event, EventContext(db=db, notifier=notifier))
    return event
