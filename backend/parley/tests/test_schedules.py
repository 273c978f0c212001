"""
Tests for scheduled messages.

Covers:
  - create / update / cancel rules
  - claim is exclusive: only the first claimer owns a schedule
  - dispatch sends through the normal path and completes
  - failures retry with exponential backoff until SCHEDULER_MAX_ATTEMPTS, then fail
  - claims abandoned in processing are released after the claim timeout
  - schedule endpoints
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import NotFoundError, ValidationFailed
from parley.database import utcnow
from parley.models.message import Message
from parley.models.scheduled_message import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING, ScheduledMessage
from parley.services import chats, schedules
from parley.tests.conftest import auth_headers


@pytest.fixture()
def pair(db, make_user):
    a, b = make_user("ana"), make_user("ben")
    chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
    return chat, a, b


def _due(db, chat, sender, body="later"):
    """A schedule whose time has already come."""
    schedule = schedules.schedule_message(
        db, chat_id=chat.id, sender_id=sender.id, body=body, scheduled_at=utcnow() + timedelta(hours=1)
    )
    schedule.scheduled_at = utcnow() - timedelta(seconds=1)
    db.commit()
    return schedule.id


class TestScheduleCrud:
    def test_must_be_in_the_future(self, db, pair):
        chat, a, _ = pair
        with pytest.raises(ValidationFailed):
            schedules.schedule_message(
                db, chat_id=chat.id, sender_id=a.id, body="late", scheduled_at=utcnow() - timedelta(minutes=1)
            )

    def test_list_newest_first(self, db, pair):
        chat, a, b = pair
        soon = schedules.schedule_message(
            db, chat_id=chat.id, sender_id=a.id, body="soon", scheduled_at=utcnow() + timedelta(hours=1)
        )
        later = schedules.schedule_message(
            db, chat_id=chat.id, sender_id=a.id, body="later", scheduled_at=utcnow() + timedelta(days=1)
        )
        schedules.schedule_message(db, chat_id=chat.id, sender_id=b.id, body="ben's", scheduled_at=utcnow() + timedelta(hours=2))
        assert [s.id for s in schedules.list_schedules(db, chat_id=chat.id, user_id=a.id)] == [later.id, soon.id]

    def test_update_requires_a_field(self, db, pair):
        chat, a, _ = pair
        s = schedules.schedule_message(db, chat_id=chat.id, sender_id=a.id, body="x", scheduled_at=utcnow() + timedelta(hours=1))
        with pytest.raises(ValidationFailed, match="No fields to update"):
            schedules.update_schedule(db, schedule_id=s.id, user_id=a.id)

    def test_update_body(self, db, pair):
        chat, a, _ = pair
        s = schedules.schedule_message(db, chat_id=chat.id, sender_id=a.id, body="x", scheduled_at=utcnow() + timedelta(hours=1))
        updated = schedules.update_schedule(db, schedule_id=s.id, user_id=a.id, body="y")
        assert updated.body == "y"

    def test_only_owner_can_edit(self, db, pair):
        chat, a, b = pair
        s = schedules.schedule_message(db, chat_id=chat.id, sender_id=a.id, body="x", scheduled_at=utcnow() + timedelta(hours=1))
        with pytest.raises(NotFoundError):
            schedules.update_schedule(db, schedule_id=s.id, user_id=b.id, body="mine now")
        with pytest.raises(NotFoundError):
            schedules.cancel_schedule(db, schedule_id=s.id, user_id=b.id)

    def test_cancel(self, db, pair):
        chat, a, _ = pair
        s = schedules.schedule_message(db, chat_id=chat.id, sender_id=a.id, body="x", scheduled_at=utcnow() + timedelta(hours=1))
        schedules.cancel_schedule(db, schedule_id=s.id, user_id=a.id)
        assert db.query(ScheduledMessage).count() == 0


class TestClaimAndDispatch:
    def test_claim_is_exclusive(self, db, pair):
        chat, a, _ = pair
        schedule_id = _due(db, chat, a)

        other = Session(bind=db.get_bind())
        try:
            assert schedules.claim_schedule(db, schedule_id) is True
            assert schedules.claim_schedule(other, schedule_id) is False
        finally:
            other.close()
        db.expire_all()
        assert db.get(ScheduledMessage, schedule_id).status == STATUS_PROCESSING

    def test_due_ids(self, db, pair):
        chat, a, _ = pair
        due = _due(db, chat, a)
        schedules.schedule_message(db, chat_id=chat.id, sender_id=a.id, body="x", scheduled_at=utcnow() + timedelta(hours=1))
        assert schedules.due_schedule_ids(db) == [due]

    def test_dispatch_sends_and_completes(self, db, pair, notifier):
        chat, a, b = pair
        schedule_id = _due(db, chat, a, body="good morning")

        assert schedules.dispatch_schedule(db, schedule_id, notifier=notifier) is True
        db.expire_all()
        schedule = db.get(ScheduledMessage, schedule_id)
        assert schedule.status == STATUS_COMPLETED
        assert schedule.completed_at is not None
        assert db.query(Message).filter(Message.chat_id == chat.id).one().body == "good morning"
        assert notifier.events_for(b.id, "message.new")

        # A second dispatch finds nothing to claim
        assert schedules.dispatch_schedule(db, schedule_id, notifier=notifier) is False
        assert db.query(Message).count() == 1

    def test_failures_retry_then_fail(self, db, pair, notifier, monkeypatch):
        chat, a, _ = pair
        schedule_id = _due(db, chat, a)

        def broken(*args, **kwargs):
            raise RuntimeError("store down")

        monkeypatch.setattr(schedules, "send_message", broken)

        for attempt in range(1, settings.SCHEDULER_MAX_ATTEMPTS + 1):
            assert schedules.dispatch_schedule(db, schedule_id, notifier=notifier) is False
            db.expire_all()
            schedule = db.get(ScheduledMessage, schedule_id)
            assert schedule.retry_count == attempt
            assert schedule.error_message == "store down"

        assert schedule.status == STATUS_FAILED
        assert schedule.active is False
        assert schedules.due_schedule_ids(db) == []

    def test_failed_attempt_backs_off(self, db, pair, notifier, monkeypatch):
        chat, a, _ = pair
        schedule_id = _due(db, chat, a)

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(schedules, "send_message", broken)
        delay = settings.SCHEDULER_RETRY_DELAY_SECONDS

        schedules.dispatch_schedule(db, schedule_id, notifier=notifier)
        db.expire_all()
        assert db.get(ScheduledMessage, schedule_id).status == STATUS_PENDING
        assert schedules.due_schedule_ids(db) == []
        assert schedules.due_schedule_ids(db, now=utcnow() + timedelta(seconds=delay + 1)) == [schedule_id]

        # The second wait is twice the first
        schedules.dispatch_schedule(db, schedule_id, notifier=notifier)
        db.expire_all()
        assert schedules.due_schedule_ids(db, now=utcnow() + timedelta(seconds=delay + 1)) == []
        assert schedules.due_schedule_ids(db, now=utcnow() + timedelta(seconds=2 * delay + 1)) == [schedule_id]

    def test_retry_delay_doubles(self):
        base = settings.SCHEDULER_RETRY_DELAY_SECONDS
        assert [schedules.retry_delay(n).total_seconds() for n in (1, 2, 3)] == [base, 2 * base, 4 * base]


class TestStaleClaims:
    def test_abandoned_claim_is_released(self, db, pair):
        chat, a, _ = pair
        schedule_id = _due(db, chat, a)
        assert schedules.claim_schedule(db, schedule_id) is True

        timeout = settings.SCHEDULER_CLAIM_TIMEOUT_SECONDS
        assert schedules.release_stale_claims(db, now=utcnow() + timedelta(seconds=timeout - 5)) == 0
        assert schedules.release_stale_claims(db, now=utcnow() + timedelta(seconds=timeout + 5)) == 1

        db.expire_all()
        assert db.get(ScheduledMessage, schedule_id).status == STATUS_PENDING
        assert schedules.due_schedule_ids(db) == [schedule_id]

    def test_finished_schedules_are_left_alone(self, db, pair, notifier):
        chat, a, _ = pair
        schedule_id = _due(db, chat, a)
        assert schedules.dispatch_schedule(db, schedule_id, notifier=notifier) is True
        assert schedules.release_stale_claims(db, now=utcnow() + timedelta(days=1)) == 0
        db.expire_all()
        assert db.get(ScheduledMessage, schedule_id).status == STATUS_COMPLETED


class TestScheduleApi:
    def test_crud(self, client: TestClient, pair):
        chat, a, _ = pair
        when = (utcnow() + timedelta(hours=3)).isoformat()
        created = client.post(
            f"/api/chats/{chat.id}/schedules", json={"body": "ping", "scheduled_at": when}, headers=auth_headers(a)
        )
        assert created.status_code == 201, created.json()
        schedule_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        patched = client.patch(
            f"/api/chats/{chat.id}/schedules/{schedule_id}", json={"body": "pong"}, headers=auth_headers(a)
        )
        assert patched.json()["body"] == "pong"

        empty = client.patch(f"/api/chats/{chat.id}/schedules/{schedule_id}", json={}, headers=auth_headers(a))
        assert empty.status_code == 422

        listed = client.get(f"/api/chats/{chat.id}/schedules", headers=auth_headers(a))
        assert [s["id"] for s in listed.json()] == [schedule_id]

        deleted = client.delete(f"/api/chats/{chat.id}/schedules/{schedule_id}", headers=auth_headers(a))
        assert deleted.status_code == 204

    def test_past_time_rejected(self, client: TestClient, pair):
        chat, a, _ = pair
        when = (utcnow() - timedelta(hours=1)).isoformat()
        resp = client.post(
            f"/api/chats/{chat.id}/schedules", json={"body": "late", "scheduled_at": when}, headers=auth_headers(a)
        )
        assert resp.status_code == 422
