"""
Process-wide Redis connection used by the push relay.

Redis is optional. With no REDIS_URL, or when the server does not answer at
startup, get_redis() returns None and push events reach only the sockets held
by this process. relay_status() reports which of those cases applies.
"""

import logging

import redis.asyncio as aioredis

from parley.config import settings

logger = logging.getLogger(__name__)

STATUS_DISABLED = "disabled"
STATUS_CONNECTED = "connected"
STATUS_UNAVAILABLE = "unavailable"


class RedisConnection:
    def __init__(self) -> None:
        self.client: aioredis.Redis | None = None
        self.status = STATUS_DISABLED

    async def open(self, url: str) -> None:
        if not url:
            logger.info("REDIS_URL is empty, push relay runs in local-only mode")
            self.status = STATUS_DISABLED
            return

        client = aioredis.from_url(url, decode_responses=True, max_connections=20)
        try:
            await client.ping()
        except (aioredis.ConnectionError, aioredis.TimeoutError, OSError) as exc:
            logger.warning("Redis at %s did not answer (%s); push relay is local-only", url, exc)
            await client.aclose()
            self.status = STATUS_UNAVAILABLE
            return

        self.client = client
        self.status = STATUS_CONNECTED
        logger.info("Push relay connected to %s", url)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        self.client = None
        self.status = STATUS_DISABLED


_connection = RedisConnection()


async def init_redis(url: str | None = None) -> None:
    """Connect once at startup; *url* defaults to ``settings.REDIS_URL``."""
    await _connection.open(settings.REDIS_URL if url is None else url)


async def close_redis() -> None:
    await _connection.close()


def get_redis() -> aioredis.Redis | None:
    return _connection.client


def relay_status() -> str:
    return _connection.status
