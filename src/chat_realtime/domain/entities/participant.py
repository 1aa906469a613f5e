from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Participant:
    id: UUID
    conversation_id: UUID
    user_id: UUID
    joined_at: datetime
    last_read_at: datetime | None = None
    is_muted: bool = False
