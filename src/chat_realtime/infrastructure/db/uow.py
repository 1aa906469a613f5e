from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncIterator, Self

from sqlalchemy.ext.asyncio import AsyncSession

from chat_realtime.application.ports.change_feed import ChangePublisher
from chat_realtime.infrastructure.db.repositories._changes import ChangeLog
from chat_realtime.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from chat_realtime.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from chat_realtime.infrastructure.db.repositories.participant import (
    ParticipantReaderRepo,
    ParticipantWriterRepo,
)
from chat_realtime.infrastructure.db.repositories.profile import ProfileReaderRepo
from chat_realtime.infrastructure.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession.

    Writers record row changes; they are published to the change feed only
    after a successful commit and dropped on rollback.
    """

    def __init__(self, session: AsyncSession, publisher: ChangePublisher | None = None) -> None:
        self._session = session
        self._publisher = publisher
        self._changes: ChangeLog = []
        self.conversations = ConversationReaderRepo(session)
        self.conversations_w = ConversationWriterRepo(session, self._changes)
        self.participants = ParticipantReaderRepo(session)
        self.participants_w = ParticipantWriterRepo(session, self._changes)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session, self._changes)
        self.profiles = ProfileReaderRepo(session)

    async def commit(self) -> None:
        await self._session.commit()
        pending = list(self._changes)
        self._changes.clear()
        if self._publisher is None:
            return
        for table, event in pending:
            try:
                await self._publisher.publish(table, event)
            except Exception:
                logger.exception("Failed to publish %s change on %s", event.kind.name, table)

    async def rollback(self) -> None:
        self._changes.clear()
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()


def make_uow_factory(publisher: ChangePublisher | None = None):
    """Build a ``UoWFactory`` that opens a fresh session per unit of work."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[SqlAlchemyUoW]:
        async with AsyncSessionLocal() as session:
            async with SqlAlchemyUoW(session, publisher) as uow:
                yield uow

    return factory
