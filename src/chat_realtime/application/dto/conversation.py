from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.entities.participant import Participant
from chat_realtime.domain.entities.profile import Profile


@dataclass(frozen=True, slots=True)
class ParticipantWithProfile:
    participant: Participant
    profile: Profile | None

    @property
    def user_id(self) -> UUID:
        return self.participant.user_id


@dataclass(frozen=True, slots=True)
class ConversationDetails:
    """Denormalised conversation row shown in the conversation list."""

    conversation: Conversation
    participants: list[ParticipantWithProfile] = field(default_factory=list)
    last_message: Message | None = None
    unread_count: int = 0
    display_name: str = ""
    avatar: str = ""
    preview: str = ""

    @property
    def id(self) -> UUID:
        return self.conversation.id

    @property
    def last_activity_at(self) -> datetime:
        if self.last_message and self.last_message.created_at > self.conversation.updated_at:
            return self.last_message.created_at
        return self.conversation.updated_at
