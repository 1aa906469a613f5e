from __future__ import annotations

from typing import AsyncContextManager, Callable, Protocol

from chat_realtime.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from chat_realtime.application.repositories.message import MessageReader, MessageWriter
from chat_realtime.application.repositories.participant import (
    ParticipantReader,
    ParticipantWriter,
)
from chat_realtime.application.repositories.profile import ProfileReader


class UnitOfWork(Protocol):
    conversations: ConversationReader
    conversations_w: ConversationWriter
    participants: ParticipantReader
    participants_w: ParticipantWriter
    messages: MessageReader
    messages_w: MessageWriter
    profiles: ProfileReader

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


UoWFactory = Callable[[], AsyncContextManager[UnitOfWork]]
