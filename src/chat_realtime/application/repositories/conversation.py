from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_realtime.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def list_for_user(self, user_id: UUID) -> list[Conversation]:
        """Conversations the user participates in, most recently updated first."""
        ...

    async def get_team_chat(self, team_id: UUID, chat_type: str) -> Conversation | None: ...

    async def find_direct(self, user_a: UUID, user_b: UUID) -> Conversation | None: ...


class ConversationWriter(Protocol):
    async def create(self, conversation: Conversation) -> Conversation: ...

    async def touch_updated_at(self, conversation_id: UUID, ts: datetime) -> None: ...
