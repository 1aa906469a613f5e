from __future__ import annotations

from typing import Iterable, Protocol
from uuid import UUID

from chat_realtime.domain.entities.profile import Profile


class ProfileReader(Protocol):
    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, Profile]: ...
