"""Change feed over Redis Pub/Sub: one listener task per table channel."""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import OrderedDict

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chat_realtime.application.exceptions import SubscriptionError, TransientDeliveryGap
from chat_realtime.application.ports.change_feed import FeedHandle, OnChange
from chat_realtime.domain.events.change import Inserted, RowChange, identity_of, row_of
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.domain.value_objects.topic import Topic
from chat_realtime.infrastructure.bus.serializer import deserialize_change, serialize_change

logger = logging.getLogger(__name__)


def channel_for(prefix: str, table: str) -> str:
    return f"{prefix}:{table}"


def calc_backoff(attempt: int, base: float, maximum: float) -> float:
    return min(base * (2 ** max(attempt - 1, 0)), maximum)


class RedisChangePublisher:
    """Implements application.ports.change_feed.ChangePublisher."""

    def __init__(self, redis: aioredis.Redis, prefix: str) -> None:
        self._redis = redis
        self._prefix = prefix

    async def publish(self, table: str, event: RowChange) -> None:
        raw = serialize_change(table, event)
        await self._redis.publish(channel_for(self._prefix, table), raw)


class _FeedSubscription:
    def __init__(
        self,
        topic: Topic,
        mask: ChangeKind,
        on_change: OnChange,
        dedup_window: int,
    ) -> None:
        self.topic = topic
        self.mask = mask
        self.on_change = on_change
        self.closed = False
        self._seen_inserts: OrderedDict[str, None] = OrderedDict()
        self._dedup_window = dedup_window

    def deliver(self, event: RowChange) -> None:
        if self.closed or not (event.kind & self.mask):
            return
        if not self.topic.matches(row_of(event)):
            return
        if isinstance(event, Inserted) and self._already_seen(identity_of(event)):
            logger.debug("Suppressed duplicate insert on %s", self.topic)
            return
        try:
            self.on_change(event)
        except Exception:
            logger.exception("Error delivering change on %s", self.topic)

    def _already_seen(self, identity: str | None) -> bool:
        if identity is None:
            return False
        if identity in self._seen_inserts:
            self._seen_inserts.move_to_end(identity)
            return True
        self._seen_inserts[identity] = None
        while len(self._seen_inserts) > self._dedup_window:
            self._seen_inserts.popitem(last=False)
        return False


class _TableListener:
    """Every open topic of one table, fed from a single Pub/Sub connection."""

    def __init__(self, table: str, channel: str) -> None:
        self.table = table
        self.channel = channel
        self.subs: dict[int, _FeedSubscription] = {}
        self.task: asyncio.Task[None] | None = None

    def dispatch(self, raw: str | bytes) -> None:
        try:
            table, event = deserialize_change(raw)
        except TransientDeliveryGap as exc:
            logger.warning("Dropping change on %s: %s", self.channel, exc.detail)
            return
        if table != self.table:
            return
        for sub in list(self.subs.values()):
            sub.deliver(event)


class RedisChangeFeed:
    """Implements application.ports.change_feed.ChangeFeed.

    Topics of the same table share one subscriber on ``<prefix>:<table>``;
    each message is decoded once and handed to every matching topic.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        prefix: str,
        *,
        reconnect_base: float = 0.5,
        reconnect_max: float = 30.0,
        dedup_window: int = 512,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._reconnect_base = reconnect_base
        self._reconnect_max = reconnect_max
        self._dedup_window = dedup_window
        self._tokens = itertools.count(1)
        self._subs: dict[int, _FeedSubscription] = {}
        self._tables: dict[str, _TableListener] = {}
        self._closing: set[asyncio.Task[None]] = set()

    def open(self, topic: Topic, mask: ChangeKind, on_change: OnChange) -> FeedHandle:
        if not topic.is_well_formed:
            raise SubscriptionError(f"Malformed topic: {topic!r}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise SubscriptionError("Change feed requires a running event loop") from exc

        listener = self._tables.get(topic.table)
        if listener is None:
            listener = _TableListener(topic.table, channel_for(self._prefix, topic.table))
            listener.task = loop.create_task(
                self._listen(listener), name=f"change-feed:{topic.table}",
            )
            listener.task.add_done_callback(self._on_listener_done)
            self._tables[topic.table] = listener
            logger.info("Change feed listening on %s", listener.channel)

        handle = FeedHandle(topic=topic, token=next(self._tokens))
        sub = _FeedSubscription(topic, mask, on_change, self._dedup_window)
        listener.subs[handle.token] = sub
        self._subs[handle.token] = sub
        logger.info("Change feed opened: %s", topic)
        return handle

    def close(self, handle: FeedHandle) -> None:
        sub = self._subs.pop(handle.token, None)
        if sub is None:
            return
        sub.closed = True
        listener = self._tables.get(handle.topic.table)
        if listener is not None:
            listener.subs.pop(handle.token, None)
            if not listener.subs:
                self._stop(listener)
        logger.info("Change feed closed: %s", handle.topic)

    async def aclose(self) -> None:
        for token in list(self._subs):
            self.close(FeedHandle(self._subs[token].topic, token))
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    @property
    def open_count(self) -> int:
        return len(self._subs)

    @property
    def connection_count(self) -> int:
        return len(self._tables)

    def _stop(self, listener: _TableListener) -> None:
        self._tables.pop(listener.table, None)
        task = listener.task
        if task is not None and not task.done():
            task.cancel()
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        logger.info("Change feed stopped listening on %s", listener.channel)

    def _on_listener_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Change feed listener %s died", task.get_name(), exc_info=exc)

    async def _listen(self, listener: _TableListener) -> None:
        attempt = 0
        while self._tables.get(listener.table) is listener:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(listener.channel)
                attempt = 0
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    listener.dispatch(message["data"])
            except (RedisError, OSError) as exc:
                attempt += 1
                delay = calc_backoff(attempt, self._reconnect_base, self._reconnect_max)
                logger.warning(
                    "Change feed %s lost connection (%s), reconnecting in %.1fs",
                    listener.channel, exc, delay,
                )
                await asyncio.sleep(delay)
            finally:
                await _close_quietly(pubsub, listener.channel)


async def _close_quietly(pubsub: aioredis.client.PubSub, channel: str) -> None:
    try:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
    except (RedisError, OSError):
        logger.debug("Pub/Sub teardown for %s failed", channel, exc_info=True)
