"""
Delayed messages.

A schedule is created pending; when its time comes a worker claims it with a
conditional UPDATE (pending -> processing) and sends it through the normal
send path.  A failed send goes back to pending with scheduled_at pushed out
exponentially, until SCHEDULER_MAX_ATTEMPTS is reached.  Claims left in
processing by a worker that died mid-send are released after
SCHEDULER_CLAIM_TIMEOUT_SECONDS.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import NotFoundError, ValidationFailed
from parley.database import transaction, utcnow
from parley.models.scheduled_message import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ScheduledMessage,
)
from parley.services.message_store import get_chat_or_404
from parley.services.messages import send_message
from parley.services.notifier import Notifier

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes from clients are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _require_future(value: datetime) -> datetime:
    value = _as_utc(value)
    if value <= utcnow():
        raise ValidationFailed("scheduled_at must be in the future")
    return value


def schedule_message(db: Session, *, chat_id: int, sender_id: int, body: str, scheduled_at: datetime) -> ScheduledMessage:
    get_chat_or_404(db, chat_id)
    if not (body or "").strip():
        raise ValidationFailed("Message body is required")

    schedule = ScheduledMessage(
        chat_id=chat_id,
        sender_id=sender_id,
        body=body,
        scheduled_at=_require_future(scheduled_at),
    )
    with transaction(db):
        db.add(schedule)
    db.refresh(schedule)
    logger.info("Scheduled message %s in chat %s for %s", schedule.id, chat_id, schedule.scheduled_at)
    return schedule


def list_schedules(db: Session, *, chat_id: int, user_id: int) -> list[ScheduledMessage]:
    return (
        db.query(ScheduledMessage)
        .filter(ScheduledMessage.chat_id == chat_id, ScheduledMessage.sender_id == user_id)
        .order_by(ScheduledMessage.scheduled_at.desc(), ScheduledMessage.id.desc())
        .all()
    )


def _editable(db: Session, schedule_id: int, user_id: int) -> ScheduledMessage:
    schedule = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.id == schedule_id,
            ScheduledMessage.sender_id == user_id,
            ScheduledMessage.status == STATUS_PENDING,
            ScheduledMessage.active == True,  # noqa: E712
        )
        .first()
    )
    if schedule is None:
        raise NotFoundError("Scheduled message not found")
    return schedule


def update_schedule(
    db: Session,
    *,
    schedule_id: int,
    user_id: int,
    body: str | None = None,
    scheduled_at: datetime | None = None,
) -> ScheduledMessage:
    if body is None and scheduled_at is None:
        raise ValidationFailed("No fields to update")

    schedule = _editable(db, schedule_id, user_id)
    with transaction(db):
        if body is not None:
            if not body.strip():
                raise ValidationFailed("Message body is required")
            schedule.body = body
        if scheduled_at is not None:
            schedule.scheduled_at = _require_future(scheduled_at)
    db.refresh(schedule)
    return schedule


def cancel_schedule(db: Session, *, schedule_id: int, user_id: int) -> None:
    schedule = _editable(db, schedule_id, user_id)
    with transaction(db):
        db.delete(schedule)
    logger.info("Scheduled message %s cancelled", schedule_id)


def due_schedule_ids(db: Session, now: datetime | None = None) -> list[int]:
    now = now or utcnow()
    rows = (
        db.query(ScheduledMessage.id)
        .filter(
            ScheduledMessage.status == STATUS_PENDING,
            ScheduledMessage.active == True,  # noqa: E712
            ScheduledMessage.scheduled_at <= now,
        )
        .order_by(ScheduledMessage.scheduled_at, ScheduledMessage.id)
        .all()
    )
    return [sid for (sid,) in rows]


def retry_delay(attempts: int) -> timedelta:
    """Wait before the next try after *attempts* failed sends."""
    return timedelta(seconds=settings.SCHEDULER_RETRY_DELAY_SECONDS * 2 ** (attempts - 1))


def release_stale_claims(db: Session, now: datetime | None = None) -> int:
    """Put schedules stuck in processing past the claim timeout back to pending."""
    cutoff = (now or utcnow()) - timedelta(seconds=settings.SCHEDULER_CLAIM_TIMEOUT_SECONDS)
    stmt = (
        update(ScheduledMessage)
        .where(
            ScheduledMessage.status == STATUS_PROCESSING,
            ScheduledMessage.active == True,  # noqa: E712
            ScheduledMessage.last_attempt_at < cutoff,
        )
        .values(status=STATUS_PENDING)
        .execution_options(synchronize_session=False)
    )
    with transaction(db):
        released = db.execute(stmt).rowcount
    if released:
        logger.warning("Released %d abandoned scheduled message claim(s)", released)
    return released


def claim_schedule(db: Session, schedule_id: int) -> bool:
    """Move one schedule from pending to processing.

    Only the caller whose UPDATE returns the row owns it; everyone else gets
    False and must leave it alone.
    """
    stmt = (
        update(ScheduledMessage)
        .where(
            ScheduledMessage.id == schedule_id,
            ScheduledMessage.status == STATUS_PENDING,
            ScheduledMessage.active == True,  # noqa: E712
        )
        .values(status=STATUS_PROCESSING, last_attempt_at=utcnow())
        .returning(ScheduledMessage.id)
        .execution_options(synchronize_session=False)
    )
    with transaction(db):
        claimed = db.execute(stmt).scalar_one_or_none()
    return claimed is not None


def dispatch_schedule(db: Session, schedule_id: int, *, notifier: Notifier | None = None) -> bool:
    """Claim and send one schedule. Returns True when the message was sent."""
    if not claim_schedule(db, schedule_id):
        return False

    schedule = db.get(ScheduledMessage, schedule_id, populate_existing=True)
    try:
        send_message(
            db,
            chat_id=schedule.chat_id,
            sender_id=schedule.sender_id,
            body=schedule.body,
            notifier=notifier,
        )
    except Exception as exc:
        db.rollback()
        schedule = db.get(ScheduledMessage, schedule_id, populate_existing=True)
        with transaction(db):
            schedule.retry_count = (schedule.retry_count or 0) + 1
            schedule.error_message = str(exc) or type(exc).__name__
            if schedule.retry_count >= settings.SCHEDULER_MAX_ATTEMPTS:
                schedule.status = STATUS_FAILED
                schedule.active = False
            else:
                schedule.status = STATUS_PENDING
                schedule.scheduled_at = utcnow() + retry_delay(schedule.retry_count)
        logger.warning(
            "Scheduled message %s failed (attempt %d): %s",
            schedule_id,
            schedule.retry_count,
            exc,
        )
        return False

    with transaction(db):
        schedule.status = STATUS_COMPLETED
        schedule.completed_at = utcnow()
        schedule.active = False
        schedule.error_message = None
    logger.info("Scheduled message %s sent", schedule_id)
    return True
