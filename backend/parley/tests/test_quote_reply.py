"""Tests for replying to a message."""

import pytest
from fastapi.testclient import TestClient

from parley.core.errors import NotFoundError
from parley.models.message import Message, MessageReply
from parley.services import chats
from parley.services.messages import send_message
from parley.services.pagination import get_messages
from parley.services.visibility import delete_messages
from parley.tests.conftest import auth_headers


@pytest.fixture()
def pair(db, make_user):
    a, b = make_user("ana"), make_user("ben")
    chat = chats.create_chat(db, creator_id=a.id, member_ids=[b.id], chat_type="single")
    return chat, a, b


def test_reply_links_to_parent(db, pair, notifier):
    chat, a, b = pair
    original = send_message(db, chat_id=chat.id, sender_id=a.id, body="lunch?", notifier=notifier)
    reply = send_message(db, chat_id=chat.id, sender_id=b.id, body="yes", reply_to_id=original.id, notifier=notifier)

    assert reply.reply_message_id == original.id
    assert reply.reply_data.body == "lunch?"
    assert reply.reply_data.sender_name == "Ana"
    link = db.query(MessageReply).filter(MessageReply.message_id == reply.id).one()
    assert link.reply_message_id == original.id


def test_reply_target_must_be_in_same_chat(db, pair, make_user, notifier):
    chat, a, b = pair
    c = make_user("cy")
    other = chats.create_chat(db, creator_id=a.id, member_ids=[c.id], chat_type="single")
    elsewhere = send_message(db, chat_id=other.id, sender_id=a.id, body="elsewhere", notifier=notifier)

    count = db.query(Message).count()
    with pytest.raises(NotFoundError):
        send_message(db, chat_id=chat.id, sender_id=b.id, body="?", reply_to_id=elsewhere.id, notifier=notifier)
    assert db.query(Message).count() == count


def test_reply_data_in_history(db, pair, notifier):
    chat, a, b = pair
    original = send_message(db, chat_id=chat.id, sender_id=a.id, body="lunch?", notifier=notifier)
    send_message(db, chat_id=chat.id, sender_id=b.id, body="yes", reply_to_id=original.id, notifier=notifier)

    page = get_messages(db, chat_id=chat.id, viewer_id=b.id)
    newest = page.data[0]
    assert newest.reply_message_id == original.id
    assert newest.reply_data.id == original.id
    assert newest.reply_data.body == "lunch?"


def test_deleted_reply_target_is_hidden_for_that_viewer(db, pair, notifier):
    chat, a, b = pair
    original = send_message(db, chat_id=chat.id, sender_id=a.id, body="oops", notifier=notifier)
    send_message(db, chat_id=chat.id, sender_id=b.id, body="what?", reply_to_id=original.id, notifier=notifier)
    delete_messages(db, chat_id=chat.id, actor_id=b.id, action="self", message_ids=[original.id], notifier=notifier)

    b_view = get_messages(db, chat_id=chat.id, viewer_id=b.id).data[0]
    assert b_view.reply_data.body is None
    a_view = get_messages(db, chat_id=chat.id, viewer_id=a.id).data[0]
    assert a_view.reply_data.body == "oops"


def test_reply_over_http(client: TestClient, db, pair, notifier):
    chat, a, b = pair
    original = send_message(db, chat_id=chat.id, sender_id=a.id, body="ping", notifier=notifier)
    resp = client.post(
        f"/api/chats/{chat.id}/messages",
        data={"body": "pong", "reply_to_id": str(original.id)},
        headers=auth_headers(b),
    )
    assert resp.status_code == 201
    assert resp.json()["reply_data"]["body"] == "ping"

    missing = client.post(
        f"/api/chats/{chat.id}/messages",
        data={"body": "pong", "reply_to_id": "9999"},
        headers=auth_headers(b),
    )
    assert missing.status_code == 404
