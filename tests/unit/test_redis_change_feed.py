from __future__ import annotations

import asyncio
import logging
import uuid

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from chat_realtime.application.exceptions import SubscriptionError
from chat_realtime.domain.events.change import Deleted, Inserted, Updated
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.domain.value_objects.topic import Topic
from chat_realtime.infrastructure.bus.redis_change_feed import (
    RedisChangeFeed,
    RedisChangePublisher,
    _FeedSubscription,
    _TableListener,
    calc_backoff,
    channel_for,
)
from chat_realtime.infrastructure.bus.serializer import serialize_change
from tests.conftest import drain


class FakePubSub:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self.channels: set[str] = set()
        self.queue: asyncio.Queue[dict] = asyncio.Queue()
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        if self._redis.subscribe_errors:
            raise self._redis.subscribe_errors.pop(0)
        self.channels.add(channel)

    async def listen(self):
        while True:
            yield await self.queue.get()

    async def unsubscribe(self, channel: str) -> None:
        self.channels.discard(channel)

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    def __init__(self) -> None:
        self.pubsubs: list[FakePubSub] = []
        self.subscribe_errors: list[Exception] = []

    def pubsub(self) -> FakePubSub:
        ps = FakePubSub(self)
        self.pubsubs.append(ps)
        return ps

    async def publish(self, channel: str, data: str) -> int:
        receivers = [ps for ps in self.pubsubs if channel in ps.channels and not ps.closed]
        for ps in receivers:
            ps.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        return len(receivers)

    @property
    def live_pubsubs(self) -> list[FakePubSub]:
        return [ps for ps in self.pubsubs if ps.channels and not ps.closed]


def _sub(topic: Topic, received: list, mask: ChangeKind = ChangeKind.ANY, window: int = 512):
    return _FeedSubscription(topic, mask, received.append, window)


def _listener(*subs: _FeedSubscription, table: str = "messages") -> _TableListener:
    listener = _TableListener(table, channel_for("changes", table))
    listener.subs.update(enumerate(subs))
    return listener


def test_dispatch_filters_by_topic_value():
    conv_id, other = str(uuid.uuid4()), str(uuid.uuid4())
    received = []
    listener = _listener(_sub(topics.conversation_messages(conv_id), received))

    listener.dispatch(serialize_change("messages", Inserted({"id": "1", "conversation_id": other})))
    listener.dispatch(serialize_change("messages", Inserted({"id": "2", "conversation_id": conv_id})))
    listener.dispatch(serialize_change("posts", Inserted({"id": "3", "conversation_id": conv_id})))

    assert [e.record["id"] for e in received] == ["2"]


def test_one_decoded_change_reaches_each_matching_topic():
    first, second = str(uuid.uuid4()), str(uuid.uuid4())
    got_first, got_second, got_table = [], [], []
    listener = _listener(
        _sub(topics.conversation_messages(first), got_first),
        _sub(topics.conversation_messages(second), got_second),
        _sub(Topic("messages"), got_table),
    )

    listener.dispatch(serialize_change("messages", Inserted({"id": "1", "conversation_id": second})))

    assert got_first == []
    assert [e.record["id"] for e in got_second] == ["1"]
    assert [e.record["id"] for e in got_table] == ["1"]


def test_deliver_matches_deletes_on_old_image():
    conv_id = str(uuid.uuid4())
    received = []
    sub = _sub(topics.conversation_messages(conv_id), received)

    sub.deliver(Deleted("9", {"conversation_id": conv_id}))

    assert [e.identity for e in received] == ["9"]


def test_deliver_respects_mask():
    received = []
    sub = _sub(Topic("messages"), received, ChangeKind.UPDATE | ChangeKind.DELETE)

    sub.deliver(Inserted({"id": "1"}))
    sub.deliver(Updated({"id": "1"}))

    assert [type(e) for e in received] == [Updated]


def test_duplicate_inserts_are_suppressed_within_window():
    received = []
    sub = _sub(Topic("messages"), received, window=2)
    events = {i: Inserted({"id": str(i)}) for i in range(3)}

    sub.deliver(events[0])
    sub.deliver(events[0])
    sub.deliver(events[1])
    sub.deliver(events[2])
    # "0" has been pushed out of the window
    sub.deliver(events[0])

    assert [e.record["id"] for e in received] == ["0", "1", "2", "0"]


def test_malformed_and_failing_deliveries_do_not_raise():
    def boom(event):
        raise RuntimeError("consumer bug")

    listener = _listener(_FeedSubscription(Topic("messages"), ChangeKind.ANY, boom, 8))

    listener.dispatch("{not json")
    listener.dispatch(serialize_change("messages", Inserted({"id": "1"})))


def test_closed_subscription_drops_everything():
    received = []
    sub = _sub(Topic("messages"), received)
    sub.closed = True

    sub.deliver(Inserted({"id": "1"}))

    assert received == []


def test_backoff_doubles_up_to_cap():
    assert [calc_backoff(n, 0.5, 3.0) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_open_rejects_malformed_topic():
    feed = RedisChangeFeed(FakeRedis(), "changes")

    with pytest.raises(SubscriptionError):
        feed.open(Topic("Messages; DROP"), ChangeKind.ANY, lambda e: None)
    with pytest.raises(SubscriptionError):
        feed.open(Topic("messages", "conversation_id", ""), ChangeKind.ANY, lambda e: None)

    assert feed.open_count == 0


def test_open_requires_running_loop():
    feed = RedisChangeFeed(FakeRedis(), "changes")

    with pytest.raises(SubscriptionError):
        feed.open(Topic("messages"), ChangeKind.ANY, lambda e: None)


@pytest.mark.asyncio
async def test_published_changes_reach_open_topics():
    redis = FakeRedis()
    feed = RedisChangeFeed(redis, "changes")
    publisher = RedisChangePublisher(redis, "changes")
    conv_id = uuid.uuid4()
    received = []

    handle = feed.open(topics.conversation_messages(conv_id), ChangeKind.ANY, received.append)
    await drain()
    await publisher.publish("messages", Inserted({"id": "1", "conversation_id": str(conv_id)}))
    await drain()

    assert len(received) == 1
    assert redis.pubsubs[0].channels == {channel_for("changes", "messages")}

    feed.close(handle)
    await publisher.publish("messages", Inserted({"id": "2", "conversation_id": str(conv_id)}))
    await feed.aclose()

    assert len(received) == 1
    assert redis.pubsubs[0].closed
    assert feed.open_count == 0


@pytest.mark.asyncio
async def test_topics_of_one_table_share_a_connection():
    redis = FakeRedis()
    feed = RedisChangeFeed(redis, "changes")
    publisher = RedisChangePublisher(redis, "changes")
    conv_ids = [uuid.uuid4() for _ in range(5)]
    received: dict[uuid.UUID, list] = {cid: [] for cid in conv_ids}

    handles = [
        feed.open(topics.conversation_messages(cid), ChangeKind.ANY, received[cid].append)
        for cid in conv_ids
    ]
    feed.open(topics.user_participations(uuid.uuid4()), ChangeKind.ANY, lambda e: None)
    await drain()

    assert feed.open_count == 6
    assert feed.connection_count == 2
    assert len(redis.live_pubsubs) == 2

    await publisher.publish("messages", Inserted({"id": "1", "conversation_id": str(conv_ids[3])}))
    await drain()
    assert [len(received[cid]) for cid in conv_ids] == [0, 0, 0, 1, 0]

    for handle in handles[:4]:
        feed.close(handle)
    await drain()
    assert feed.connection_count == 2

    feed.close(handles[4])
    await drain()
    assert feed.connection_count == 1
    assert len(redis.live_pubsubs) == 1
    await feed.aclose()


@pytest.mark.asyncio
async def test_reconnects_after_connection_loss():
    redis = FakeRedis()
    redis.subscribe_errors = [RedisConnectionError("refused"), RedisConnectionError("refused")]
    feed = RedisChangeFeed(redis, "changes", reconnect_base=0.0, reconnect_max=0.0)
    received = []

    feed.open(Topic("messages"), ChangeKind.ANY, received.append)
    await drain(20)
    await RedisChangePublisher(redis, "changes").publish("messages", Inserted({"id": "1"}))
    await drain()

    assert len(redis.pubsubs) == 3
    assert len(received) == 1
    await feed.aclose()


@pytest.mark.asyncio
async def test_reconnects_after_server_error_reply():
    redis = FakeRedis()
    redis.subscribe_errors = [ResponseError("LOADING Redis is loading the dataset in memory")]
    feed = RedisChangeFeed(redis, "changes", reconnect_base=0.0, reconnect_max=0.0)
    received = []

    feed.open(Topic("messages"), ChangeKind.ANY, received.append)
    await drain(20)
    await RedisChangePublisher(redis, "changes").publish("messages", Inserted({"id": "1"}))
    await drain()

    assert len(redis.pubsubs) == 2
    assert len(received) == 1
    await feed.aclose()


@pytest.mark.asyncio
async def test_unexpected_listener_death_is_logged(caplog):
    redis = FakeRedis()
    redis.subscribe_errors = [RuntimeError("bug in transport")]
    feed = RedisChangeFeed(redis, "changes")

    with caplog.at_level(logging.ERROR):
        feed.open(Topic("messages"), ChangeKind.ANY, lambda e: None)
        await drain()

    assert any("died" in r.getMessage() for r in caplog.records)
    await feed.aclose()
