from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    team_id: UUID | None
    type: str
    name: str | None
    icon_url: str | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
