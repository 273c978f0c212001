"""
Cross-process push relay.

Each API process subscribes to the deployment's push channel and forwards
every envelope to the sockets connected locally.  Publishing side lives in
parley.services.notifier.
"""

import json
import logging

from parley.redis.client import get_redis
from parley.redis.keys import push_channel
from parley.websocket.manager import manager

logger = logging.getLogger(__name__)


async def publish(user_id: int, event: str, payload: dict) -> bool:
    """Publish one push envelope. Returns False when Redis is unavailable."""
    r = get_redis()
    if r is None:
        return False
    envelope = {"user_id": user_id, "type": event, "data": payload}
    await r.publish(push_channel(), json.dumps(envelope, default=str))
    return True


async def run_relay() -> None:
    """Forward published envelopes to local sockets until cancelled."""
    r = get_redis()
    if r is None:
        return
    pubsub = r.pubsub()
    await pubsub.subscribe(push_channel())
    logger.info("Push relay subscribed to %s", push_channel())
    try:
        async for item in pubsub.listen():
            if item.get("type") != "message":
                continue
            try:
                envelope = json.loads(item["data"])
                await manager.send_to_user(
                    envelope["user_id"],
                    {"type": envelope["type"], "data": envelope["data"]},
                )
            except Exception as exc:
                logger.warning("Dropping malformed push envelope: %s", exc)
    finally:
        await pubsub.aclose()
