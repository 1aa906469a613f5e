"""Reference-counted fan-out of change-feed topics to in-process listeners."""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from chat_realtime.application.ports.change_feed import ChangeFeed, FeedHandle
from chat_realtime.domain.events.change import RowChange
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.domain.value_objects.topic import Topic

logger = logging.getLogger(__name__)

Listener = Callable[[RowChange], None]


@dataclass(eq=False, slots=True)
class SubscriptionHandle:
    """Opaque token returned by ``acquire``; pass it back to ``release``."""

    topic: Topic
    token: int

    def __hash__(self) -> int:
        return hash(self.token)


@dataclass(eq=False, slots=True)
class _Listener:
    callback: Listener
    mask: ChangeKind
    active: bool = True


@dataclass(eq=False, slots=True)
class _TopicEntry:
    topic: Topic
    feed_handle: FeedHandle | None = None
    listeners: dict[int, _Listener] = field(default_factory=dict)
    closed: bool = False


class TopicSubscriptionRegistry:
    """At most one feed connection per topic, shared by every consumer of that topic.

    ``acquire`` opens the feed on first use and ``release`` closes it when the
    last consumer leaves. Events are fanned out synchronously in registration
    order. The map is guarded by a lock; callbacks always run outside it, so a
    listener may acquire or release from inside its own callback.
    """

    def __init__(self, feed: ChangeFeed) -> None:
        self._feed = feed
        self._entries: dict[Topic, _TopicEntry] = {}
        self._handles: dict[int, tuple[_TopicEntry, _Listener]] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()

    def acquire(
        self,
        topic: Topic,
        on_event: Listener,
        mask: ChangeKind = ChangeKind.ANY,
    ) -> SubscriptionHandle:
        listener = _Listener(on_event, mask)
        with self._lock:
            entry = self._entries.get(topic)
            if entry is None:
                entry = _TopicEntry(topic)
                # SubscriptionError propagates with nothing registered
                entry.feed_handle = self._feed.open(
                    topic, ChangeKind.ANY, lambda event: self._fan_out(entry, event),
                )
                self._entries[topic] = entry
            token = next(self._tokens)
            entry.listeners[token] = listener
            self._handles[token] = (entry, listener)
        logger.debug("Acquired %s (refs=%d)", topic, len(entry.listeners))
        return SubscriptionHandle(topic=topic, token=token)

    def release(self, handle: SubscriptionHandle) -> None:
        feed_handle: FeedHandle | None = None
        with self._lock:
            found = self._handles.pop(handle.token, None)
            if found is None:
                return
            entry, listener = found
            listener.active = False
            entry.listeners.pop(handle.token, None)
            if not entry.listeners:
                entry.closed = True
                self._entries.pop(entry.topic, None)
                feed_handle = entry.feed_handle
        if feed_handle is not None:
            self._feed.close(feed_handle)
        logger.debug("Released %s (refs=%d)", handle.topic, len(entry.listeners))

    def release_all(self) -> None:
        with self._lock:
            held = [
                SubscriptionHandle(entry.topic, token)
                for token, (entry, _) in self._handles.items()
            ]
        for handle in held:
            self.release(handle)

    def ref_count(self, topic: Topic) -> int:
        with self._lock:
            entry = self._entries.get(topic)
            return len(entry.listeners) if entry else 0

    @property
    def active_topics(self) -> list[Topic]:
        with self._lock:
            return list(self._entries)

    def _fan_out(self, entry: _TopicEntry, event: RowChange) -> None:
        with self._lock:
            if entry.closed:
                return
            listeners = list(entry.listeners.values())
        for listener in listeners:
            if not listener.active or not (event.kind & listener.mask):
                continue
            try:
                listener.callback(event)
            except Exception:
                logger.exception("Listener failed on %s", entry.topic)
