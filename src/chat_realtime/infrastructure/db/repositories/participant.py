from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_realtime.application.mappers.records import participant_to_record
from chat_realtime.domain.entities.participant import Participant
from chat_realtime.domain.events.change import Deleted, Inserted, Updated
from chat_realtime.infrastructure.db.mappers import participant as mapper
from chat_realtime.infrastructure.db.models.participant import ParticipantModel
from chat_realtime.infrastructure.db.repositories._changes import ChangeLog

TABLE = ParticipantModel.__tablename__


class ParticipantReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, conversation_id: UUID, user_id: UUID) -> Participant | None:
        stmt = select(ParticipantModel).where(
            ParticipantModel.conversation_id == conversation_id,
            ParticipantModel.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_participants(self, conversation_id: UUID) -> list[Participant]:
        stmt = (
            select(ParticipantModel)
            .where(ParticipantModel.conversation_id == conversation_id)
            .order_by(ParticipantModel.joined_at, ParticipantModel.id)
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class ParticipantWriterRepo:
    def __init__(self, session: AsyncSession, changes: ChangeLog) -> None:
        self._session = session
        self._changes = changes

    async def add(self, participant: Participant) -> None:
        model = mapper.entity_to_model(participant)
        self._session.add(model)
        await self._session.flush()
        self._changes.append((TABLE, Inserted(participant_to_record(mapper.model_to_entity(model)))))

    async def _update(self, conversation_id: UUID, user_id: UUID, **values: object) -> None:
        stmt = (
            update(ParticipantModel)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
            )
            .values(**values)
            .returning(ParticipantModel)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is not None:
            self._changes.append((TABLE, Updated(participant_to_record(mapper.model_to_entity(model)))))

    async def touch_last_read_at(
        self, conversation_id: UUID, user_id: UUID, ts: datetime
    ) -> None:
        await self._update(conversation_id, user_id, last_read_at=ts)

    async def set_muted(self, conversation_id: UUID, user_id: UUID, muted: bool) -> None:
        await self._update(conversation_id, user_id, is_muted=muted)

    async def remove(self, conversation_id: UUID, user_id: UUID) -> bool:
        stmt = (
            delete(ParticipantModel)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
            )
            .returning(ParticipantModel)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return False
        record = participant_to_record(mapper.model_to_entity(model))
        self._changes.append((TABLE, Deleted(record["id"], record)))
        return True
