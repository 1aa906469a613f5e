from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_realtime.domain.entities.message import Message


class MessageReader(Protocol):
    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Newest ``limit`` messages older than ``before``, in ascending order."""
        ...

    async def get_last(self, conversation_id: UUID) -> Message | None: ...

    async def count_unread(
        self,
        conversation_id: UUID,
        viewer_id: UUID,
        since: datetime | None,
    ) -> int:
        """Messages from other senders created after ``since`` (all of them if None)."""
        ...


class MessageWriter(Protocol):
    async def create(self, message: Message) -> Message: ...
