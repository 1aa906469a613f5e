from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from chat_realtime.application.mappers.records import conversation_to_record
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.events.change import Inserted, Updated
from chat_realtime.domain.value_objects.enums import ChatType
from chat_realtime.infrastructure.db.mappers import conversation as mapper
from chat_realtime.infrastructure.db.models.conversation import ConversationModel
from chat_realtime.infrastructure.db.models.participant import ParticipantModel
from chat_realtime.infrastructure.db.repositories._changes import ChangeLog


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        result = await self._session.get(ConversationModel, conversation_id)
        return mapper.model_to_entity(result) if result else None

    async def list_for_user(self, user_id: UUID) -> list[Conversation]:
        stmt = (
            select(ConversationModel)
            .join(
                ParticipantModel,
                ParticipantModel.conversation_id == ConversationModel.id,
            )
            .where(ParticipantModel.user_id == user_id)
            .order_by(ConversationModel.updated_at.desc(), ConversationModel.id)
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def get_team_chat(self, team_id: UUID, chat_type: str) -> Conversation | None:
        stmt = (
            select(ConversationModel)
            .where(
                ConversationModel.team_id == team_id,
                ConversationModel.type == chat_type,
            )
            .order_by(ConversationModel.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def find_direct(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        pa = aliased(ParticipantModel)
        pb = aliased(ParticipantModel)
        stmt = (
            select(ConversationModel)
            .join(pa, pa.conversation_id == ConversationModel.id)
            .join(pb, pb.conversation_id == ConversationModel.id)
            .where(
                ConversationModel.type == ChatType.DIRECT.value,
                pa.user_id == user_a,
                pb.user_id == user_b,
            )
            .order_by(ConversationModel.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession, changes: ChangeLog) -> None:
        self._session = session
        self._changes = changes

    async def create(self, conversation: Conversation) -> Conversation:
        model = mapper.entity_to_model(conversation)
        self._session.add(model)
        await self._session.flush()
        entity = mapper.model_to_entity(model)
        self._changes.append((ConversationModel.__tablename__, Inserted(conversation_to_record(entity))))
        return entity

    async def touch_updated_at(self, conversation_id: UUID, ts: datetime) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(updated_at=ts)
            .returning(ConversationModel)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is not None:
            record = conversation_to_record(mapper.model_to_entity(model))
            self._changes.append((ConversationModel.__tablename__, Updated(record)))
