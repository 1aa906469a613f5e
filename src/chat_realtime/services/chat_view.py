"""Ordered live message list for the conversation currently on screen."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from chat_realtime.application.mappers.records import message_from_record
from chat_realtime.application.uow import UoWFactory
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.events.change import Deleted, Inserted, RowChange, Updated
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.services.subscription_registry import (
    SubscriptionHandle,
    TopicSubscriptionRegistry,
)

logger = logging.getLogger(__name__)

OnMessages = Callable[[list[Message]], None]
OnMessageEvent = Callable[[ChangeKind, Message], None]


class ChatViewController:
    """Binds one conversation's message stream to an append-only list.

    Inserts are idempotent by message id, updates replace in place and keep
    position, deletes of unknown ids are no-ops. Delivery within a topic is
    assumed to be in order, so inserts go to the tail.
    """

    def __init__(
        self,
        registry: TopicSubscriptionRegistry,
        uow_factory: UoWFactory | None = None,
        on_change: OnMessages | None = None,
        *,
        on_event: OnMessageEvent | None = None,
    ) -> None:
        self._registry = registry
        self._uow_factory = uow_factory
        self._on_change = on_change
        self._on_event = on_event
        self._conversation_id: UUID | None = None
        self._handle: SubscriptionHandle | None = None
        self._messages: list[Message] = []
        self._positions: dict[UUID, int] = {}

    @property
    def conversation_id(self) -> UUID | None:
        return self._conversation_id

    def messages(self) -> list[Message]:
        return list(self._messages)

    def bind(self, conversation_id: UUID) -> None:
        if conversation_id == self._conversation_id and self._handle is not None:
            return
        # old topic is released before the new one is acquired
        self.unbind()
        self._conversation_id = conversation_id
        self._handle = self._registry.acquire(
            topics.conversation_messages(conversation_id), self.apply,
        )

    def unbind(self) -> None:
        if self._handle is not None:
            self._registry.release(self._handle)
            self._handle = None
        self._conversation_id = None
        self._reset([])

    async def load(self, limit: int = 50, before: datetime | None = None) -> list[Message]:
        """Merge a page of stored history into the live list."""
        if self._conversation_id is None or self._uow_factory is None:
            return self.messages()
        conversation_id = self._conversation_id
        async with self._uow_factory() as uow:
            page = await uow.messages.list_messages(conversation_id, before=before, limit=limit)
        if conversation_id != self._conversation_id:
            return self.messages()
        fresh = [m for m in page if m.id not in self._positions]
        if fresh:
            merged = sorted(self._messages + fresh, key=lambda m: m.created_at)
            self._reset(merged)
            self._notify()
        return self.messages()

    def apply(self, event: RowChange) -> None:
        if isinstance(event, Deleted):
            self.on_delete(event.identity)
            return
        try:
            message = message_from_record(event.record)
        except (KeyError, ValueError, TypeError):
            logger.warning("Dropping unreadable message row in %s", self._conversation_id)
            return
        if isinstance(event, Inserted):
            self.on_insert(message)
        elif isinstance(event, Updated):
            self.on_update(message)

    def on_insert(self, message: Message) -> bool:
        if not self._belongs(message) or message.id in self._positions:
            return False
        self._positions[message.id] = len(self._messages)
        self._messages.append(message)
        self._notify()
        self._emit(ChangeKind.INSERT, message)
        return True

    def on_update(self, message: Message) -> bool:
        if not self._belongs(message):
            return False
        index = self._positions.get(message.id)
        if index is None:
            return False
        self._messages[index] = message
        self._notify()
        self._emit(ChangeKind.UPDATE, message)
        return True

    def on_delete(self, message_id: UUID | str) -> bool:
        try:
            key = message_id if isinstance(message_id, UUID) else UUID(str(message_id))
        except ValueError:
            return False
        index = self._positions.get(key)
        if index is None:
            return False
        removed = self._messages[index]
        self._reset([m for m in self._messages if m.id != key])
        self._notify()
        self._emit(ChangeKind.DELETE, removed)
        return True

    def _belongs(self, message: Message) -> bool:
        return self._conversation_id is not None and message.conversation_id == self._conversation_id

    def _reset(self, messages: list[Message]) -> None:
        self._messages = messages
        self._positions = {m.id: i for i, m in enumerate(messages)}

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.messages())
        except Exception:
            logger.exception("Chat view listener failed")

    def _emit(self, kind: ChangeKind, message: Message) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(kind, message)
        except Exception:
            logger.exception("Chat view event listener failed")
