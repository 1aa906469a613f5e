from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chat_realtime.application.mappers.records import message_to_record
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.events.change import Inserted
from chat_realtime.infrastructure.db.mappers import message as mapper
from chat_realtime.infrastructure.db.models.message import MessageModel
from chat_realtime.infrastructure.db.repositories._changes import ChangeLog


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(limit)
        )
        if before is not None:
            stmt = stmt.where(MessageModel.created_at < before)
        result = await self._session.execute(stmt)
        newest_first = [mapper.model_to_entity(m) for m in result.scalars().all()]
        return list(reversed(newest_first))

    async def get_last(self, conversation_id: UUID) -> Message | None:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def count_unread(
        self,
        conversation_id: UUID,
        viewer_id: UUID,
        since: datetime | None,
    ) -> int:
        stmt = select(func.count(MessageModel.id)).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.sender_id != viewer_id,
        )
        if since is not None:
            stmt = stmt.where(MessageModel.created_at > since)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


class MessageWriterRepo:
    def __init__(self, session: AsyncSession, changes: ChangeLog) -> None:
        self._session = session
        self._changes = changes

    async def create(self, message: Message) -> Message:
        model = mapper.entity_to_model(message)
        self._session.add(model)
        await self._session.flush()
        entity = mapper.model_to_entity(model)
        self._changes.append((MessageModel.__tablename__, Inserted(message_to_record(entity))))
        return entity
