"""
Namespaced Redis key helpers.

Every key is prefixed with SERVER_DOMAIN so that several deployments can
share one Redis without seeing each other's events.
"""

from parley.config import settings


def push_channel() -> str:
    """Pub/sub channel carrying per-user push events between API processes."""
    return f"{settings.SERVER_DOMAIN}:push"
