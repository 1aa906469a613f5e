"""Ephemeral "user is typing" presence derived from a proxy update signal."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from chat_realtime.application.mappers.records import typing_record, user_id_of
from chat_realtime.application.ports.change_feed import ChangePublisher
from chat_realtime.application.ports.scheduler import Clock, Scheduler, SystemClock, TimerHandle
from chat_realtime.application.uow import UoWFactory
from chat_realtime.domain.events.change import RowChange, Updated
from chat_realtime.domain.value_objects import topic as topics
from chat_realtime.domain.value_objects.enums import TypingSignalMode
from chat_realtime.domain.value_objects.topic import Topic

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0

OnTyping = Callable[[UUID, bool], None]


def signal_topic(conversation_id: UUID, mode: TypingSignalMode) -> Topic:
    """Topic carrying the typing signal for ``mode``."""
    if mode is TypingSignalMode.READ_CURSOR:
        return topics.conversation_participants(conversation_id)
    return topics.typing_presence(conversation_id)


@dataclass(slots=True)
class TypingState:
    is_typing: bool
    expires_at: float
    timer: TimerHandle


class TypingIndicatorMachine:
    """Idle -> Typing -> Idle, tracked independently per remote participant.

    ``on_typing(user, True)`` fires only on the Idle -> Typing edge; repeats
    within the window just push the deadline out. ``on_typing(user, False)``
    fires when the window elapses without a refresh.
    """

    def __init__(
        self,
        conversation_id: UUID,
        local_user_id: UUID,
        on_typing: OnTyping,
        scheduler: Scheduler,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_active: int = 32,
    ) -> None:
        self.conversation_id = conversation_id
        self.local_user_id = local_user_id
        self._on_typing = on_typing
        self._scheduler = scheduler
        self._timeout = timeout
        self._max_active = max_active
        self._states: dict[UUID, TypingState] = {}
        self._closed = False

    def handle(self, event: RowChange) -> None:
        if self._closed or not isinstance(event, Updated):
            return
        user_id = user_id_of(event.record)
        if user_id is None or user_id == self.local_user_id:
            return
        if str(event.record.get("conversation_id")) != str(self.conversation_id):
            return

        state = self._states.get(user_id)
        if state is not None:
            state.timer.cancel()
            state.timer = self._arm(user_id)
            state.expires_at = self._scheduler.time() + self._timeout
            return

        if len(self._states) >= self._max_active:
            logger.debug(
                "Typing cap %d reached in %s, ignoring %s",
                self._max_active, self.conversation_id, user_id,
            )
            return
        self._states[user_id] = TypingState(
            is_typing=True,
            expires_at=self._scheduler.time() + self._timeout,
            timer=self._arm(user_id),
        )
        self._emit(user_id, True)

    def typing_users(self) -> list[UUID]:
        return list(self._states)

    def state_of(self, user_id: UUID) -> TypingState | None:
        return self._states.get(user_id)

    def close(self) -> None:
        """Cancel every pending timer without emitting further callbacks."""
        self._closed = True
        for state in self._states.values():
            state.timer.cancel()
        self._states.clear()

    def _arm(self, user_id: UUID) -> TimerHandle:
        return self._scheduler.call_later(self._timeout, lambda: self._expire(user_id))

    def _expire(self, user_id: UUID) -> None:
        if self._closed or self._states.pop(user_id, None) is None:
            return
        self._emit(user_id, False)

    def _emit(self, user_id: UUID, is_typing: bool) -> None:
        try:
            self._on_typing(user_id, is_typing)
        except Exception:
            logger.exception("on_typing callback failed for %s", user_id)


class TypingBroadcaster:
    """Fire-and-forget emission of the local user's typing signal."""

    def __init__(
        self,
        mode: TypingSignalMode,
        publisher: ChangePublisher,
        uow_factory: UoWFactory,
        clock: Clock | None = None,
    ) -> None:
        self._mode = mode
        self._publisher = publisher
        self._uow_factory = uow_factory
        self._clock = clock or SystemClock()

    async def broadcast(self, conversation_id: UUID, user_id: UUID) -> None:
        now = self._clock.now()
        try:
            if self._mode is TypingSignalMode.READ_CURSOR:
                async with self._uow_factory() as uow:
                    await uow.participants_w.touch_last_read_at(conversation_id, user_id, now)
                    await uow.commit()
            else:
                await self._publisher.publish(
                    topics.TYPING_PRESENCE,
                    Updated(typing_record(conversation_id, user_id, now)),
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Typing broadcast dropped for %s in %s: %s", user_id, conversation_id, exc,
            )
