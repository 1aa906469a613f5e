"""WebSocket smoke tests against in-memory feed and storage."""
from __future__ import annotations

import dataclasses
import uuid

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chat_realtime.app import create_app
from chat_realtime.application.mappers.records import message_to_record
from chat_realtime.config import settings
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.events.change import Deleted, Inserted, Updated
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.services.subscription_registry import TopicSubscriptionRegistry
from tests.conftest import (
    FakeChangeFeed,
    FakePublisher,
    FakeUoW,
    FakeUoWFactory,
    make_conversation,
    make_message,
    minutes,
)

USER_ID = uuid.uuid4()


def _token(sub: str = str(USER_ID)) -> str:
    return jwt.encode({"sub": sub}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def state():
    app = create_app()
    uow = FakeUoW()
    feed = FakeChangeFeed()
    app.state.publisher = FakePublisher()
    app.state.uow_factory = FakeUoWFactory(uow)
    app.state.registry = TopicSubscriptionRegistry(feed)
    return app, uow, feed


def test_connect_pushes_conversation_list(state):
    app, uow, feed = state
    conv = uow.add_conversation(make_conversation(name="Hawks"), USER_ID)

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        frame = ws.receive_json()

    assert frame["type"] == "conversations.updated"
    [item] = frame["data"]["conversations"]
    assert item["id"] == str(conv.id)
    assert item["display_name"] == "Hawks"


def test_disconnect_releases_every_topic(state):
    app, uow, feed = state
    uow.add_conversation(make_conversation(), USER_ID)

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.receive_json()
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

    assert app.state.registry.active_topics == []
    assert feed.open_count == 0


def test_subscribe_to_foreign_conversation_reports_error(state):
    app, uow, _ = state
    foreign = uow.add_conversation(make_conversation(), uuid.uuid4())

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "data": {"conversation_id": str(foreign.id)}})
        frame = ws.receive_json()

    assert frame == {"type": "error", "data": {"code": "ForbiddenError", "detail": "Not a participant of this conversation"}}


def test_invalid_frames_are_reported(state):
    app, _, _ = state

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.receive_json()
        ws.send_text("not json")
        assert ws.receive_json()["data"]["code"] == "invalid_payload"
        ws.send_json({"type": "typing", "data": {}})
        assert ws.receive_json()["data"]["code"] == "invalid_data"
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["data"]["code"] == "unknown_type"


def test_bad_token_is_rejected(state):
    app, _, _ = state

    with pytest.raises(WebSocketDisconnect):
        with TestClient(app).websocket_connect(f"/ws/chat?token={_token('not-a-uuid')}") as ws:
            ws.receive_json()


def _next(ws, frame_type: str) -> dict:
    while True:
        frame = ws.receive_json()
        if frame["type"] == frame_type:
            return frame["data"]
        assert frame["type"] == "conversations.updated", frame


def test_subscribe_loads_history_with_senders(state):
    app, uow, _ = state
    coach = uuid.uuid4()
    uow.profiles._profiles[coach] = Profile(id=coach, full_name="Coach Kim", avatar_url="https://cdn/k.png")
    conv = uow.add_conversation(make_conversation(), USER_ID, coach)
    older = uow.add_message(make_message(conversation_id=conv.id, sender_id=coach, created_at=minutes(1)))
    mine = uow.add_message(make_message(conversation_id=conv.id, sender_id=USER_ID, created_at=minutes(2)))

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.send_json({"type": "subscribe", "data": {"conversation_id": str(conv.id)}})
        data = _next(ws, "messages.loaded")

    assert data["conversation_id"] == str(conv.id)
    assert [m["id"] for m in data["messages"]] == [str(older.id), str(mine.id)]
    assert data["messages"][0]["sender"] == {
        "id": str(coach),
        "full_name": "Coach Kim",
        "avatar_url": "https://cdn/k.png",
    }
    assert data["messages"][1]["sender"] is None


def test_live_changes_are_forwarded_through_the_chat_view(state):
    app, uow, feed = state
    coach = uuid.uuid4()
    uow.profiles._profiles[coach] = Profile(id=coach, full_name="Coach Kim")
    conv = uow.add_conversation(make_conversation(), USER_ID, coach)
    topic = topics.conversation_messages(conv.id)
    msg = make_message(conversation_id=conv.id, sender_id=coach, content="bring water", created_at=minutes(3))

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.send_json({"type": "subscribe", "data": {"conversation_id": str(conv.id)}})
        assert _next(ws, "messages.loaded")["messages"] == []

        # feed callbacks run on the app's event loop
        ws.portal.call(feed.emit, topic, Inserted(message_to_record(msg)))
        ws.portal.call(feed.emit, topic, Inserted(message_to_record(msg)))
        ws.portal.call(feed.emit, topic, Deleted(str(uuid.uuid4()), {"conversation_id": str(conv.id)}))
        edited = dataclasses.replace(msg, content="bring water and cleats")
        ws.portal.call(feed.emit, topic, Updated(message_to_record(edited)))
        ws.portal.call(feed.emit, topic, Deleted(str(msg.id), {"conversation_id": str(conv.id)}))

        created = _next(ws, "message.created")
        updated = _next(ws, "message.updated")
        deleted = _next(ws, "message.deleted")

    assert created["id"] == str(msg.id)
    assert created["sender"]["full_name"] == "Coach Kim"
    assert updated["content"] == "bring water and cleats"
    assert deleted == {"conversation_id": str(conv.id), "id": str(msg.id)}


def test_unsubscribe_releases_conversation_topics(state):
    app, uow, feed = state
    conv = uow.add_conversation(make_conversation(), USER_ID)
    typing_topic = topics.typing_presence(conv.id)

    with TestClient(app).websocket_connect(f"/ws/chat?token={_token()}") as ws:
        ws.send_json({"type": "subscribe", "data": {"conversation_id": str(conv.id)}})
        _next(ws, "messages.loaded")
        assert feed.is_open(typing_topic)
        assert app.state.registry.ref_count(topics.conversation_messages(conv.id)) == 2

        ws.send_json({"type": "unsubscribe", "data": {"conversation_id": str(conv.id)}})
        ws.send_json({"type": "ping"})
        _next(ws, "pong")

        assert not feed.is_open(typing_topic)
        assert app.state.registry.ref_count(topics.conversation_messages(conv.id)) == 1
