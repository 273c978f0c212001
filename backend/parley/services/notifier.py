"""
Delivery notifier: the push sink every state change reports to.

Contract: send_to_user(user_id, event, payload) is fire-and-forget.  A user
who is not connected is a no-op, and a delivery failure is logged, never
raised, because the state being announced is already committed.
"""

import asyncio
import logging
from typing import Protocol

from parley.redis import relay
from parley.websocket.manager import manager

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_to_user(self, user_id: int, event: str, payload: dict) -> None: ...


class PushNotifier:
    """Schedules delivery on the running event loop.

    Publishes through Redis when available so sockets held by other API
    processes receive the event too; otherwise delivers to local sockets.
    """

    def __init__(self) -> None:
        # The loop only holds weak references to tasks
        self._pending: set[asyncio.Task] = set()

    def send_to_user(self, user_id: int, event: str, payload: dict) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, dropping %s for user %s", event, user_id)
            return
        task = loop.create_task(self._deliver(user_id, event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, user_id: int, event: str, payload: dict) -> None:
        try:
            if await relay.publish(user_id, event, payload):
                return
            await manager.send_to_user(user_id, {"type": event, "data": payload})
        except Exception as exc:
            logger.warning("Push delivery of %s to user %s failed: %s", event, user_id, exc)


def notify_users(notifier: Notifier, user_ids, event: str, payload: dict) -> None:
    """Send one event to many users, isolating each delivery."""
    for user_id in user_ids:
        try:
            notifier.send_to_user(user_id, event, payload)
        except Exception as exc:
            logger.warning("Notifier rejected %s for user %s: %s", event, user_id, exc)


push_notifier = PushNotifier()


def get_notifier() -> Notifier:
    return push_notifier
