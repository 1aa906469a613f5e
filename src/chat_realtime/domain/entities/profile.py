from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Profile:
    id: UUID
    full_name: str | None
    avatar_url: str | None = None
    email: str | None = None
