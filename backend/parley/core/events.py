"""Domain events and the in-process event bus.

Push event names are the ``type`` field clients receive over the WebSocket.
Domain events are dataclasses dispatched synchronously, after the producing
transaction commits, to the consumers registered in
``parley.services.dispatch``.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from parley.services.notifier import Notifier

logger = logging.getLogger(__name__)

# WebSocket push event names
MESSAGE_NEW = "message.new"
MESSAGE_READ = "message.read"
MESSAGE_DELETED = "message.deleted"
USER_TYPING = "user.typing"


@dataclass(frozen=True)
class MessageSent:
    message_id: int
    chat_id: int
    sender_id: int
    kind: str
    # Serialized message exactly as pushed to clients
    payload: dict = field(default_factory=dict)


@dataclass
class EventContext:
    db: Session
    notifier: "Notifier"


Handler = Callable[[EventContext, Any], None]


class EventBus:
    """Typed synchronous dispatcher.

    Delivery is at-least-once from the consumer's point of view: a producer
    may emit the same event twice, so every handler must be idempotent.
    A failing handler is logged and does not stop the others, because the
    state that produced the event is already committed.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, []))

    def emit(self, event: Any, ctx: EventContext) -> None:
        for handler in self.handlers_for(type(event)):
            try:
                handler(ctx, event)
            except Exception:
                logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__name__", handler),
                    type(event).__name__,
                )
                ctx.db.rollback()
