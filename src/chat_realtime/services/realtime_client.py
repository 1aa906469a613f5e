"""Per-viewer entry point to the realtime layer.

All subscriptions made through a client are tracked so that
``unsubscribe_all`` tears everything down when the viewer goes away.
"""
from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import UUID

from chat_realtime.application.dto.conversation import ConversationDetails
from chat_realtime.application.mappers.records import message_from_record
from chat_realtime.application.ports.change_feed import ChangePublisher
from chat_realtime.application.ports.scheduler import Scheduler
from chat_realtime.application.uow import UoWFactory
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.events.change import Deleted, Inserted, RowChange, Updated
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.domain.value_objects.enums import ChangeKind, TypingSignalMode
from chat_realtime.domain.value_objects.topic import Topic
from chat_realtime.services import conversation_service
from chat_realtime.services.chat_view import ChatViewController, OnMessageEvent, OnMessages
from chat_realtime.services.conversation_aggregator import (
    ConversationAggregator,
    OnConversations,
    OnError,
)
from chat_realtime.services.subscription_registry import (
    Listener,
    SubscriptionHandle,
    TopicSubscriptionRegistry,
)
from chat_realtime.services.typing_indicator import (
    OnTyping,
    TypingBroadcaster,
    TypingIndicatorMachine,
    signal_topic,
)

logger = logging.getLogger(__name__)

OnRecord = Callable[[dict[str, Any]], None]
OnRecordChange = Callable[[dict[str, Any], ChangeKind], None]


def _safe_message(record: dict[str, Any]) -> Message | None:
    try:
        return message_from_record(record)
    except (KeyError, ValueError, TypeError):
        logger.warning("Dropping unreadable message row %s", record.get("id"))
        return None


class RealtimeClient:
    def __init__(
        self,
        viewer_id: UUID,
        registry: TopicSubscriptionRegistry,
        publisher: ChangePublisher,
        uow_factory: UoWFactory,
        scheduler: Scheduler,
        *,
        typing_mode: TypingSignalMode = TypingSignalMode.PRESENCE,
        typing_timeout: float = 3.0,
        typing_max_active: int = 32,
        on_error: OnError | None = None,
    ) -> None:
        self.viewer_id = viewer_id
        self._registry = registry
        self._uow_factory = uow_factory
        self._scheduler = scheduler
        self._typing_mode = typing_mode
        self._typing_timeout = typing_timeout
        self._typing_max_active = typing_max_active
        self._on_error = on_error
        self._broadcaster = TypingBroadcaster(typing_mode, publisher, uow_factory)
        self._handles: dict[SubscriptionHandle, Callable[[], None] | None] = {}
        self._views: list[ChatViewController] = []
        self._aggregator: ConversationAggregator | None = None
        self._conversation_listeners = 0

    # conversations

    async def get_conversations(self) -> list[ConversationDetails]:
        if self._aggregator is not None:
            return await self._aggregator.refresh()
        async with self._uow_factory() as uow:
            return await conversation_service.get_conversations(self.viewer_id, uow)

    def subscribe_to_conversations(self, on_change: OnConversations) -> Callable[[], None]:
        if self._aggregator is None:
            self._aggregator = ConversationAggregator(
                self.viewer_id, self._registry, self._uow_factory, on_error=self._on_error,
            )
            self._aggregator.start()
        aggregator = self._aggregator
        remove = aggregator.subscribe(on_change)
        self._conversation_listeners += 1
        done = False

        def unsubscribe() -> None:
            nonlocal done
            if done:
                return
            done = True
            remove()
            if self._aggregator is not aggregator:
                return
            self._conversation_listeners -= 1
            if self._conversation_listeners == 0:
                aggregator.close()
                self._aggregator = None

        return unsubscribe

    @property
    def aggregator(self) -> ConversationAggregator | None:
        return self._aggregator

    # messages

    def subscribe_to_messages(
        self,
        conversation_id: UUID,
        on_message: Callable[[Message], None],
    ) -> SubscriptionHandle:
        def listener(event: RowChange) -> None:
            if isinstance(event, Inserted):
                message = _safe_message(event.record)
                if message is not None:
                    on_message(message)

        return self._acquire(
            topics.conversation_messages(conversation_id), listener, ChangeKind.INSERT,
        )

    def subscribe_to_message_updates(
        self,
        conversation_id: UUID,
        on_update: Callable[[Message], None],
        on_delete: Callable[[str], None],
    ) -> SubscriptionHandle:
        def listener(event: RowChange) -> None:
            if isinstance(event, Updated):
                message = _safe_message(event.record)
                if message is not None:
                    on_update(message)
            elif isinstance(event, Deleted):
                on_delete(event.identity)

        return self._acquire(
            topics.conversation_messages(conversation_id),
            listener,
            ChangeKind.UPDATE | ChangeKind.DELETE,
        )

    def open_chat_view(
        self,
        conversation_id: UUID,
        on_change: OnMessages | None = None,
        *,
        on_event: OnMessageEvent | None = None,
    ) -> ChatViewController:
        """Chat view bound to ``conversation_id``.

        Release it with ``close_chat_view``; ``unsubscribe_all`` closes any
        view still open.
        """
        view = ChatViewController(self._registry, self._uow_factory, on_change, on_event=on_event)
        view.bind(conversation_id)
        self._views.append(view)
        return view

    def close_chat_view(self, view: ChatViewController) -> None:
        if view in self._views:
            self._views.remove(view)
        view.unbind()

    # typing

    def subscribe_to_typing_indicators(
        self,
        conversation_id: UUID,
        local_user_id: UUID,
        on_typing: OnTyping,
    ) -> SubscriptionHandle:
        machine = TypingIndicatorMachine(
            conversation_id,
            local_user_id,
            on_typing,
            self._scheduler,
            timeout=self._typing_timeout,
            max_active=self._typing_max_active,
        )
        return self._acquire(
            signal_topic(conversation_id, self._typing_mode),
            machine.handle,
            ChangeKind.UPDATE,
            cleanup=machine.close,
        )

    async def broadcast_typing(self, conversation_id: UUID, user_id: UUID) -> None:
        await self._broadcaster.broadcast(conversation_id, user_id)

    # other feed topics

    def subscribe_to_team_posts(self, team_id: UUID, on_post: OnRecord) -> SubscriptionHandle:
        return self._acquire(topics.team_posts(team_id), _records(on_post), ChangeKind.INSERT)

    def subscribe_to_post_comments(self, post_id: UUID, on_comment: OnRecord) -> SubscriptionHandle:
        return self._acquire(topics.post_comments(post_id), _records(on_comment), ChangeKind.INSERT)

    def subscribe_to_post_reactions(
        self, post_id: UUID, on_reaction: OnRecordChange
    ) -> SubscriptionHandle:
        return self._acquire(
            topics.post_reactions(post_id),
            _records_with_kind(on_reaction),
            ChangeKind.INSERT | ChangeKind.DELETE,
        )

    def subscribe_to_event_rsvps(self, event_id: UUID, on_rsvp: OnRecordChange) -> SubscriptionHandle:
        return self._acquire(
            topics.event_rsvps(event_id),
            _records_with_kind(on_rsvp),
            ChangeKind.INSERT | ChangeKind.UPDATE,
        )

    # teardown

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle not in self._handles:
            return
        cleanup = self._handles.pop(handle)
        self._registry.release(handle)
        if cleanup is not None:
            cleanup()

    def unsubscribe_all(self) -> None:
        for handle in list(self._handles):
            self.unsubscribe(handle)
        for view in self._views:
            view.unbind()
        self._views.clear()
        if self._aggregator is not None:
            self._aggregator.close()
            self._aggregator = None
            self._conversation_listeners = 0

    def _acquire(
        self,
        topic: Topic,
        listener: Listener,
        mask: ChangeKind,
        *,
        cleanup: Callable[[], None] | None = None,
    ) -> SubscriptionHandle:
        handle = self._registry.acquire(topic, listener, mask)
        self._handles[handle] = cleanup
        return handle


def _records(callback: OnRecord) -> Listener:
    def listener(event: RowChange) -> None:
        if isinstance(event, (Inserted, Updated)):
            callback(event.record)

    return listener


def _records_with_kind(callback: OnRecordChange) -> Listener:
    def listener(event: RowChange) -> None:
        if isinstance(event, Deleted):
            callback({**(event.old or {}), "id": event.identity}, event.kind)
        else:
            callback(event.record, event.kind)

    return listener
