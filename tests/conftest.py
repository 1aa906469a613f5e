"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable
from uuid import UUID

import pytest

from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.exceptions import SubscriptionError
from chat_realtime.application.ports.change_feed import FeedHandle, OnChange
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.entities.participant import Participant
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.events.change import RowChange
from chat_realtime.domain.value_objects.enums import ChangeKind, ChatType, MessageType
from chat_realtime.domain.value_objects.topic import Topic

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def viewer_id() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def other_id() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def user_principal(viewer_id: UUID) -> Principal:
    return Principal(user_id=viewer_id)


def make_conversation(
    *,
    conversation_id: UUID | None = None,
    type: str = ChatType.GROUP,
    name: str | None = "Team",
    team_id: UUID | None = None,
    updated_at: datetime = T0,
) -> Conversation:
    return Conversation(
        id=conversation_id or uuid.uuid4(),
        team_id=team_id,
        type=type,
        name=name,
        icon_url=None,
        created_by=None,
        created_at=T0,
        updated_at=updated_at,
    )


def make_participant(
    conversation_id: UUID,
    user_id: UUID,
    *,
    last_read_at: datetime | None = None,
) -> Participant:
    return Participant(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        user_id=user_id,
        joined_at=T0,
        last_read_at=last_read_at,
    )


def make_message(
    *,
    conversation_id: UUID | None = None,
    sender_id: UUID | None = None,
    content: str | None = "hello",
    type: str = MessageType.TEXT,
    created_at: datetime | None = None,
    message_id: UUID | None = None,
) -> Message:
    ts = created_at or datetime.now(timezone.utc)
    return Message(
        id=message_id or uuid.uuid4(),
        conversation_id=conversation_id or uuid.uuid4(),
        sender_id=sender_id or uuid.uuid4(),
        content=content,
        type=type,
        created_at=ts,
        updated_at=ts,
    )


def minutes(n: int) -> datetime:
    return T0 + timedelta(minutes=n)


async def drain(rounds: int = 10) -> None:
    """Let scheduled callbacks and tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# --- in-memory repositories ------------------------------------------------


@dataclass
class FakeConversationReader:
    _store: dict[UUID, Conversation] = field(default_factory=dict)
    _members: list[Participant] = field(default_factory=list)

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return self._store.get(conversation_id)

    async def list_for_user(self, user_id: UUID) -> list[Conversation]:
        ids = {p.conversation_id for p in self._members if p.user_id == user_id}
        convs = [c for c in self._store.values() if c.id in ids]
        return sorted(convs, key=lambda c: c.updated_at, reverse=True)

    async def get_team_chat(self, team_id: UUID, chat_type: str) -> Conversation | None:
        for c in self._store.values():
            if c.team_id == team_id and c.type == chat_type:
                return c
        return None

    async def find_direct(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        for c in self._store.values():
            if c.type != ChatType.DIRECT:
                continue
            members = {p.user_id for p in self._members if p.conversation_id == c.id}
            if members == {user_a, user_b}:
                return c
        return None


@dataclass
class FakeConversationWriter:
    _reader: FakeConversationReader

    async def create(self, conversation: Conversation) -> Conversation:
        self._reader._store[conversation.id] = conversation
        return conversation

    async def touch_updated_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._reader._store.get(conversation_id)
        if conv is not None:
            self._reader._store[conversation_id] = replace(conv, updated_at=ts)


@dataclass
class FakeParticipantReader:
    _participants: list[Participant] = field(default_factory=list)

    async def get(self, conversation_id: UUID, user_id: UUID) -> Participant | None:
        for p in self._participants:
            if p.conversation_id == conversation_id and p.user_id == user_id:
                return p
        return None

    async def list_participants(self, conversation_id: UUID) -> list[Participant]:
        return [p for p in self._participants if p.conversation_id == conversation_id]


@dataclass
class FakeParticipantWriter:
    _reader: FakeParticipantReader

    async def add(self, participant: Participant) -> None:
        self._reader._participants.append(participant)

    def _replace(self, conversation_id: UUID, user_id: UUID, **values: Any) -> None:
        rows = self._reader._participants
        for i, p in enumerate(rows):
            if p.conversation_id == conversation_id and p.user_id == user_id:
                rows[i] = replace(p, **values)

    async def touch_last_read_at(self, conversation_id: UUID, user_id: UUID, ts: datetime) -> None:
        self._replace(conversation_id, user_id, last_read_at=ts)

    async def set_muted(self, conversation_id: UUID, user_id: UUID, muted: bool) -> None:
        self._replace(conversation_id, user_id, is_muted=muted)

    async def remove(self, conversation_id: UUID, user_id: UUID) -> bool:
        rows = self._reader._participants
        before = len(rows)
        rows[:] = [
            p for p in rows if not (p.conversation_id == conversation_id and p.user_id == user_id)
        ]
        return len(rows) < before


@dataclass
class FakeMessageReader:
    _messages: list[Message] = field(default_factory=list)

    def _in(self, conversation_id: UUID) -> list[Message]:
        msgs = [m for m in self._messages if m.conversation_id == conversation_id]
        return sorted(msgs, key=lambda m: m.created_at)

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        msgs = self._in(conversation_id)
        if before is not None:
            msgs = [m for m in msgs if m.created_at < before]
        return msgs[-limit:]

    async def get_last(self, conversation_id: UUID) -> Message | None:
        msgs = self._in(conversation_id)
        return msgs[-1] if msgs else None

    async def count_unread(
        self,
        conversation_id: UUID,
        viewer_id: UUID,
        since: datetime | None,
    ) -> int:
        return sum(
            1
            for m in self._in(conversation_id)
            if m.sender_id != viewer_id and (since is None or m.created_at > since)
        )


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader

    async def create(self, message: Message) -> Message:
        self._reader._messages.append(message)
        return message


@dataclass
class FakeProfileReader:
    _profiles: dict[UUID, Profile] = field(default_factory=dict)

    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, Profile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    conversations: FakeConversationReader = field(default_factory=FakeConversationReader)
    conversations_w: FakeConversationWriter | None = None
    participants: FakeParticipantReader = field(default_factory=FakeParticipantReader)
    participants_w: FakeParticipantWriter | None = None
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    profiles: FakeProfileReader = field(default_factory=FakeProfileReader)
    commits: int = 0

    def __post_init__(self) -> None:
        # membership rows are shared so list_for_user sees participant writes
        self.conversations._members = self.participants._participants
        if self.conversations_w is None:
            self.conversations_w = FakeConversationWriter(self.conversations)
        if self.participants_w is None:
            self.participants_w = FakeParticipantWriter(self.participants)
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)

    @property
    def _committed(self) -> bool:
        return self.commits > 0

    def add_conversation(self, conversation: Conversation, *members: UUID) -> Conversation:
        self.conversations._store[conversation.id] = conversation
        for user_id in members:
            self.participants._participants.append(make_participant(conversation.id, user_id))
        return conversation

    def add_message(self, message: Message) -> Message:
        self.messages._messages.append(message)
        return message

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        pass


class FakeUoWFactory:
    """``UoWFactory`` yielding one shared FakeUoW; can be told to fail or to block."""

    def __init__(self, uow: FakeUoW | None = None) -> None:
        self.uow = uow or FakeUoW()
        self.calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None

    def __call__(self):
        return self._open()

    @asynccontextmanager
    async def _open(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("database unavailable")
        yield self.uow


@pytest.fixture
def uow() -> FakeUoW:
    return FakeUoW()


@pytest.fixture
def uow_factory(uow: FakeUoW) -> FakeUoWFactory:
    return FakeUoWFactory(uow)


# --- change feed, publisher and timers -------------------------------------


@dataclass
class _OpenFeed:
    topic: Topic
    mask: ChangeKind
    on_change: OnChange


class FakeChangeFeed:
    """Records opens and closes; ``emit`` delivers an event to every open subscription of a topic."""

    def __init__(self) -> None:
        self.opened: list[Topic] = []
        self.closed: list[Topic] = []
        self.fail_topics: set[Topic] = set()
        self._subs: dict[int, _OpenFeed] = {}
        self._tokens = itertools.count(1)

    def open(self, topic: Topic, mask: ChangeKind, on_change: OnChange) -> FeedHandle:
        if topic in self.fail_topics or not topic.is_well_formed:
            raise SubscriptionError(f"cannot open {topic}")
        handle = FeedHandle(topic=topic, token=next(self._tokens))
        self._subs[handle.token] = _OpenFeed(topic, mask, on_change)
        self.opened.append(topic)
        return handle

    def close(self, handle: FeedHandle) -> None:
        if self._subs.pop(handle.token, None) is not None:
            self.closed.append(handle.topic)

    async def aclose(self) -> None:
        for token in list(self._subs):
            self.close(FeedHandle(self._subs[token].topic, token))

    @property
    def open_count(self) -> int:
        return len(self._subs)

    def is_open(self, topic: Topic) -> bool:
        return any(s.topic == topic for s in self._subs.values())

    def emit(self, topic: Topic, event: RowChange) -> None:
        for sub in list(self._subs.values()):
            if sub.topic == topic and event.kind & sub.mask:
                sub.on_change(event)


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


class FakePublisher:
    def __init__(self) -> None:
        self.published: list[tuple[str, RowChange]] = []
        self.fail = False

    async def publish(self, table: str, event: RowChange) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.published.append((table, event))


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@dataclass
class ManualTimer:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic ``Scheduler``: time only moves on ``advance``."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.timers: list[ManualTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for t in self.timers if not t.cancelled)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
