"""
Tests for chat provisioning and chat-level reads.

Covers:
  - single chat dedup in either order
  - group creation: memberships, generated name, group_created system message
  - broadcast creation: creator-only membership, recipient rows
  - member-count validation, unknown type, unknown users
  - chat list ordering, pinning and unread counts
  - conversation contacts
  - chat detail and its HTTP error mapping
"""

import pytest
from fastapi.testclient import TestClient

from parley.core.errors import NotFoundError, ValidationFailed
from parley.models.chat import BroadcastRecipient, ChatMember, ChatType
from parley.models.message import Message, MessageKind, MessageSystemEvent, SystemEventType
from parley.schemas.user import UserSummary
from parley.services import chats
from parley.services.messages import send_message
from parley.tests.conftest import auth_headers


class TestSingleChat:
    def test_dedup_in_either_order(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        first = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
        second = chats.create_chat(db, creator_id=b.id, member_ids=[a.id], chat_type="single")
        assert first.id == second.id
        assert db.query(ChatMember).filter(ChatMember.chat_id == first.id).count() == 2

    def test_creator_in_member_list_is_ignored(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[a.id, b.id, b.id], chat_type=ChatType.SINGLE)
        assert sorted(chats.member_ids(db, chat.id)) == sorted([a.id, b.id])

    def test_requires_exactly_one_other_user(self, db, make_user):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        with pytest.raises(ValidationFailed):
            chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="single")
        with pytest.raises(ValidationFailed):
            chats.create_chat(db, creator_id=a.id, member_ids=[a.id], chat_type="single")

    def test_get_or_create_reuses_existing(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        chat, created = chats.get_or_create_single_chat(db, a.id, b.id)
        db.commit()
        again, created_again = chats.get_or_create_single_chat(db, b.id, a.id)
        assert created and not created_again
        assert chat.id == again.id


class TestGroupChat:
    def test_creates_members_and_system_message(self, db, make_user, notifier):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="group", notifier=notifier)

        assert sorted(chats.member_ids(db, chat.id)) == sorted([a.id, b.id, c.id])
        system = db.query(Message).filter(Message.chat_id == chat.id).one()
        assert system.kind is MessageKind.SYSTEM
        event = db.query(MessageSystemEvent).filter(MessageSystemEvent.message_id == system.id).one()
        assert event.event is SystemEventType.GROUP_CREATED
        assert event.event_metadata == {"actor_id": a.id, "target_user_ids": [b.id, c.id]}

    def test_system_message_is_pushed_to_members(self, db, make_user, notifier):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="group", notifier=notifier)
        for user in (a, b, c):
            pushed = notifier.events_for(user.id, "message.new")
            assert len(pushed) == 1
            assert pushed[0]["kind"] == "system"

    def test_generated_name_previews_three_members(self, db, make_user):
        creator = make_user("zed")
        others = [make_user(n) for n in ("ana", "ben", "cy", "dee")]
        chat = chats.create_chat(db, creator_id=creator.id, member_ids=[u.id for u in others], chat_type="group")
        assert chat.name == "Ana, Ben, Cy +2 more"

    def test_explicit_name_is_kept(self, db, make_user):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="group", name="Trip")
        assert chat.name == "Trip"

    def test_needs_two_other_members(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        with pytest.raises(ValidationFailed):
            chats.create_chat(db, creator_id=a.id, member_ids=[b.id, a.id], chat_type="group")


class TestBroadcastChat:
    def test_creator_is_only_member(self, db, make_user):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="broadcast")
        assert chats.member_ids(db, chat.id) == [a.id]
        assert chats.recipient_ids(db, chat.id) == [b.id, c.id]
        assert chat.name == "Ben, Cy"
        assert db.query(BroadcastRecipient).count() == 2

    def test_needs_a_recipient(self, db, make_user):
        a = make_user("ana")
        with pytest.raises(ValidationFailed):
            chats.create_chat(db, creator_id=a.id, member_ids=[a.id], chat_type="broadcast")


class TestCreateValidation:
    def test_unknown_type(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        with pytest.raises(ValidationFailed, match="Unsupported chat type"):
            chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="channel")

    def test_unknown_user(self, db, make_user):
        a = make_user("ana")
        with pytest.raises(NotFoundError):
            chats.create_chat(db, creator_id=a.id, member_ids=[9999], chat_type="single")

    def test_nothing_written_on_failure(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        with pytest.raises(NotFoundError):
            chats.create_chat(db, creator_id=a.id, member_ids=[b.id, 9999], chat_type="group")
        assert db.query(Message).count() == 0
        assert db.query(ChatMember).count() == 0


class TestChatList:
    def test_unread_counts_and_last_message(self, db, make_user, notifier):
        a, b = make_user("ana"), make_user("ben")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
        send_message(db, chat_id=chat.id, sender_id=a.id, body="one", notifier=notifier)
        send_message(db, chat_id=chat.id, sender_id=a.id, body="two", notifier=notifier)

        [item] = chats.list_chats(db, user_id=b.id)
        assert item.unread_count == 2
        assert item.last_message.body == "two"
        assert [m.id for m in item.members] == [a.id]

        [mine] = chats.list_chats(db, user_id=a.id)
        assert mine.unread_count == 0

    def test_pinned_first_then_recent(self, db, make_user, notifier):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        older = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
        newer = chats.create_chat(db, creator_id=a.id, member_ids=[c.id], chat_type="single")
        send_message(db, chat_id=older.id, sender_id=a.id, body="first", notifier=notifier)
        send_message(db, chat_id=newer.id, sender_id=a.id, body="second", notifier=notifier)

        assert [i.chat_id for i in chats.list_chats(db, user_id=a.id)] == [newer.id, older.id]

        chats.pin_chat(db, chat_id=older.id, user_id=a.id, pinned=True)
        chats.pin_chat(db, chat_id=older.id, user_id=a.id, pinned=True)
        listed = chats.list_chats(db, user_id=a.id)
        assert [i.chat_id for i in listed] == [older.id, newer.id]
        assert listed[0].is_pinned

        chats.pin_chat(db, chat_id=older.id, user_id=a.id, pinned=False)
        assert [i.chat_id for i in chats.list_chats(db, user_id=a.id)] == [newer.id, older.id]

    def test_contacts(self, db, make_user):
        a, b, c, d = make_user("ana"), make_user("ben"), make_user("cy"), make_user("dee")
        chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
        chats.create_chat(db, creator_id=c.id, member_ids=[a.id, b.id], chat_type="group")
        assert [u.id for u in chats.conversation_contacts(db, a.id)] == [b.id, c.id]
        assert chats.conversation_contacts(db, d.id) == []


class TestChatDetail:
    def test_single_chat_lists_both_members(self, db, make_user):
        a, b = make_user("ana"), make_user("ben")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
        detail = chats.get_chat_detail(db, chat.id)
        assert detail.id == chat.id
        assert detail.chat_type is ChatType.SINGLE
        assert [(m.id, m.name) for m in detail.members] == [(a.id, "Ana"), (b.id, "Ben")]

    def test_broadcast_lists_creator_then_recipients(self, db, make_user):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id, c.id], chat_type="broadcast")
        detail = chats.get_chat_detail(db, chat.id)
        assert [m.id for m in detail.members] == [a.id, b.id, c.id]
        assert detail.name == "Ben, Cy"

    def test_unknown_chat(self, db):
        with pytest.raises(NotFoundError):
            chats.get_chat_detail(db, 9999)


class TestChatApi:
    def test_create_and_fetch(self, client: TestClient, make_user):
        a, b, c = make_user("ana"), make_user("ben"), make_user("cy")
        resp = client.post(
            "/api/chats",
            json={"user_ids": [b.id, c.id], "chat_type": "group", "name": "  "},
            headers=auth_headers(a),
        )
        assert resp.status_code == 200, resp.json()
        body = resp.json()
        assert body["chat_type"] == "group"
        assert body["name"] == "Ben, Cy, Ana"
        assert {m["id"] for m in body["members"]} == {a.id, b.id, c.id}

        detail = client.get(f"/api/chats/{body['id']}", headers=auth_headers(b))
        assert detail.status_code == 200
        assert detail.json()["id"] == body["id"]

    def test_unknown_type_is_rejected(self, client: TestClient, make_user):
        a, b = make_user("ana"), make_user("ben")
        resp = client.post("/api/chats", json={"user_ids": [b.id], "chat_type": "channel"}, headers=auth_headers(a))
        assert resp.status_code == 422

    def test_unknown_user_maps_to_404(self, client: TestClient, make_user):
        a = make_user("ana")
        resp = client.post("/api/chats", json={"user_ids": [4242], "chat_type": "single"}, headers=auth_headers(a))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_list_and_pin(self, client: TestClient, make_user):
        a, b = make_user("ana"), make_user("ben")
        chat_id = client.post(
            "/api/chats", json={"user_ids": [b.id], "chat_type": "single"}, headers=auth_headers(a)
        ).json()["id"]

        resp = client.put(f"/api/chats/{chat_id}/pin", json={"pinned": True}, headers=auth_headers(a))
        assert resp.json() == {"chat_id": chat_id, "pinned": True}

        listed = client.get("/api/chats", headers=auth_headers(a)).json()
        assert listed[0]["chat_id"] == chat_id
        assert listed[0]["is_pinned"] is True

        contacts = client.get("/api/chats/contacts", headers=auth_headers(a)).json()
        assert [u["id"] for u in contacts] == [b.id]

    def test_response_model_failure_is_a_server_error(self, client: TestClient, db, make_user, monkeypatch):
        a, b = make_user("ana"), make_user("ben")
        chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")

        def broken_detail(db_, chat_id):
            return UserSummary.model_validate({"id": chat_id})

        monkeypatch.setattr(chats, "get_chat_detail", broken_detail)
        resp = client.get(f"/api/chats/{chat.id}", headers=auth_headers(a))
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error", "code": "internal_error"}
