from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_realtime.domain.entities.participant import Participant


class ParticipantReader(Protocol):
    async def get(self, conversation_id: UUID, user_id: UUID) -> Participant | None: ...

    async def list_participants(self, conversation_id: UUID) -> list[Participant]: ...


class ParticipantWriter(Protocol):
    async def add(self, participant: Participant) -> None: ...

    async def touch_last_read_at(
        self, conversation_id: UUID, user_id: UUID, ts: datetime
    ) -> None: ...

    async def set_muted(self, conversation_id: UUID, user_id: UUID, muted: bool) -> None: ...

    async def remove(self, conversation_id: UUID, user_id: UUID) -> bool:
        """Delete the membership row. Returns False if there was none."""
        ...
