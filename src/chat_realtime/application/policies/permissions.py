from __future__ import annotations

from uuid import UUID

from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.exceptions import ForbiddenError, NotFoundError
from chat_realtime.application.repositories.participant import ParticipantReader
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.participant import Participant


async def assert_conversation_access(
    principal: Principal,
    conversation: Conversation | None,
    participants: ParticipantReader,
) -> Participant:
    """Raise if conversation doesn't exist or principal is not a member."""
    if conversation is None:
        raise NotFoundError("Conversation not found")

    membership = await participants.get(conversation.id, principal.user_id)
    if membership is None:
        raise ForbiddenError("Not a participant of this conversation")

    return membership


def assert_not_self(principal: Principal, other_user_id: UUID) -> None:
    if principal.user_id == other_user_id:
        raise ForbiddenError("Cannot open a direct conversation with yourself")
