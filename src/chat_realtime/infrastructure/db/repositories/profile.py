from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chat_realtime.domain.entities.profile import Profile
from chat_realtime.infrastructure.db.mappers import profile as mapper
from chat_realtime.infrastructure.db.models.profile import ProfileModel


class ProfileReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, Profile]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        stmt = select(ProfileModel).where(ProfileModel.id.in_(ids))
        result = await self._session.execute(stmt)
        return {m.id: mapper.model_to_entity(m) for m in result.scalars().all()}
