"""Live, denormalised conversation list for one viewer."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable
from uuid import UUID

from chat_realtime.application.dto.conversation import ConversationDetails
from chat_realtime.application.exceptions import AppError, RefreshFailure, SubscriptionError
from chat_realtime.application.uow import UoWFactory
from chat_realtime.domain.events.change import RowChange, row_of
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.services import conversation_service
from chat_realtime.services.subscription_registry import (
    SubscriptionHandle,
    TopicSubscriptionRegistry,
)

logger = logging.getLogger(__name__)

OnConversations = Callable[[list[ConversationDetails]], None]
OnError = Callable[[AppError], None]


class ConversationAggregator:
    """Caches the viewer's conversation list and recomputes it on relevant changes.

    Every qualifying change triggers a full recompute from storage rather than
    an incremental patch. A failed recompute keeps the previous list and
    reports a ``RefreshFailure``; the next qualifying change tries again.
    Changes that arrive while a recompute is running collapse into a single
    trailing recompute.
    """

    def __init__(
        self,
        viewer_id: UUID,
        registry: TopicSubscriptionRegistry,
        uow_factory: UoWFactory,
        *,
        on_error: OnError | None = None,
    ) -> None:
        self.viewer_id = viewer_id
        self._registry = registry
        self._uow_factory = uow_factory
        self._on_error = on_error
        self._cache: dict[UUID, ConversationDetails] = {}
        self._order: list[ConversationDetails] = []
        self._listeners: dict[int, OnConversations] = {}
        self._tokens = itertools.count(1)
        self._membership: SubscriptionHandle | None = None
        self._message_topics: dict[UUID, SubscriptionHandle] = {}
        self._member_topics: dict[UUID, SubscriptionHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._refreshing = False
        self._dirty = False
        self._generation = 0
        self._applied_generation = 0
        self._closed = False
        self.last_error: AppError | None = None

    def start(self) -> None:
        if self._membership is None:
            self._membership = self._registry.acquire(
                topics.user_participations(self.viewer_id), self._on_change,
            )

    def list(self) -> list[ConversationDetails]:
        return list(self._order)

    def get(self, conversation_id: UUID) -> ConversationDetails | None:
        return self._cache.get(conversation_id)

    def subscribe(self, on_change: OnConversations) -> Callable[[], None]:
        token = next(self._tokens)
        self._listeners[token] = on_change

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    async def refresh(self) -> list[ConversationDetails]:
        """Recompute from storage. Raises RefreshFailure, leaving the cache as it was.

        Recomputes may overlap. A result is applied only if no recompute that
        started later has been applied already, so the cache never goes back
        to an older snapshot.
        """
        self._generation += 1
        generation = self._generation
        try:
            async with self._uow_factory() as uow:
                items = await conversation_service.get_conversations(self.viewer_id, uow)
        except Exception as exc:
            failure = RefreshFailure(f"Conversation refresh failed: {exc}")
            self.last_error = failure
            logger.warning("Conversation refresh for %s failed: %s", self.viewer_id, exc)
            raise failure from exc
        if self._closed:
            return self.list()
        if generation < self._applied_generation:
            logger.debug("Discarding superseded conversation refresh for %s", self.viewer_id)
            return self.list()
        self._applied_generation = generation
        self.last_error = None
        self._apply(items)
        return self.list()

    async def refresh_on(self, event: RowChange) -> None:
        if self._closed or not self._qualifies(event):
            return
        if self._refreshing:
            self._dirty = True
            return
        self._refreshing = True
        try:
            while True:
                self._dirty = False
                try:
                    await self.refresh()
                except RefreshFailure as failure:
                    self._report(failure)
                if not self._dirty or self._closed:
                    break
        finally:
            self._refreshing = False

    def close(self) -> None:
        self._closed = True
        if self._membership is not None:
            self._registry.release(self._membership)
            self._membership = None
        for held in (self._message_topics, self._member_topics):
            for handle in held.values():
                self._registry.release(handle)
            held.clear()
        for task in self._tasks:
            task.cancel()
        self._listeners.clear()

    def _qualifies(self, event: RowChange) -> bool:
        row = row_of(event)
        if not row:
            return False
        if str(row.get("user_id")) == str(self.viewer_id):
            return True
        conversation_id = row.get("conversation_id")
        return conversation_id is not None and any(
            str(cid) == str(conversation_id) for cid in self._cache
        )

    def _on_change(self, event: RowChange) -> None:
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self.refresh_on(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _apply(self, items: list[ConversationDetails]) -> None:
        self._cache = {item.id: item for item in items}
        self._order = list(items)
        self._sync_topics(self._message_topics, topics.conversation_messages)
        self._sync_topics(self._member_topics, topics.conversation_participants)
        snapshot = self.list()
        for listener in list(self._listeners.values()):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Conversation list listener failed")

    def _sync_topics(
        self,
        held: dict[UUID, SubscriptionHandle],
        topic_for: Callable[[UUID], topics.Topic],
    ) -> None:
        """Follow ``topic_for(id)`` for exactly the cached conversations."""
        for conversation_id in list(held):
            if conversation_id not in self._cache:
                self._registry.release(held.pop(conversation_id))
        for conversation_id in self._cache:
            if conversation_id in held:
                continue
            topic = topic_for(conversation_id)
            try:
                held[conversation_id] = self._registry.acquire(topic, self._on_change)
            except SubscriptionError as exc:
                logger.warning("Cannot follow %s: %s", topic, exc)
                self._report(exc)

    def _report(self, error: AppError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Aggregator error callback failed")
