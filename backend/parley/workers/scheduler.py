"""In-process poller that sends due scheduled messages."""

import asyncio
import logging

from parley.config import settings
from parley.database import SessionLocal
from parley.services.schedules import dispatch_schedule, due_schedule_ids, release_stale_claims

logger = logging.getLogger(__name__)


def run_due_schedules() -> int:
    """Dispatch every schedule that is due now. Returns how many were sent."""
    sent = 0
    db = SessionLocal()
    try:
        release_stale_claims(db)
        for schedule_id in due_schedule_ids(db):
            if dispatch_schedule(db, schedule_id):
                sent += 1
    finally:
        db.close()
    return sent


async def run_scheduler() -> None:
    interval = settings.SCHEDULER_POLL_SECONDS
    if interval <= 0:
        logger.info("Scheduler disabled (SCHEDULER_POLL_SECONDS=%s)", interval)
        return

    logger.info("Scheduler polling every %ss", interval)
    while True:
        try:
            sent = run_due_schedules()
            if sent:
                logger.info("Scheduler sent %d message(s)", sent)
        except Exception as exc:
            logger.error("Scheduler pass failed: %s", exc)
        await asyncio.sleep(interval)
