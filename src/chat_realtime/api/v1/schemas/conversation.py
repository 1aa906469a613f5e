from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from chat_realtime.api.v1.schemas.message import MessageResponse
from chat_realtime.application.dto.conversation import ConversationDetails
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.value_objects.enums import ChatType


class ConversationResponse(BaseModel):
    id: UUID
    team_id: UUID | None
    type: str
    name: str | None
    icon_url: str | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ParticipantResponse(BaseModel):
    user_id: UUID
    full_name: str | None
    avatar_url: str | None
    joined_at: datetime
    last_read_at: datetime | None
    is_muted: bool


class ConversationDetailsResponse(ConversationResponse):
    participants: list[ParticipantResponse]
    last_message: MessageResponse | None
    unread_count: int
    display_name: str
    avatar: str
    preview: str

    @classmethod
    def from_details(cls, details: ConversationDetails) -> ConversationDetailsResponse:
        base = ConversationResponse.model_validate(details.conversation, from_attributes=True)
        return cls(
            **base.model_dump(),
            participants=[
                ParticipantResponse(
                    user_id=p.participant.user_id,
                    full_name=p.profile.full_name if p.profile else None,
                    avatar_url=p.profile.avatar_url if p.profile else None,
                    joined_at=p.participant.joined_at,
                    last_read_at=p.participant.last_read_at,
                    is_muted=p.participant.is_muted,
                )
                for p in details.participants
            ],
            last_message=(
                MessageResponse.from_message(
                    details.last_message, _profile_of(details, details.last_message.sender_id),
                )
                if details.last_message
                else None
            ),
            unread_count=details.unread_count,
            display_name=details.display_name,
            avatar=details.avatar,
            preview=details.preview,
        )


def _profile_of(details: ConversationDetails, user_id: UUID) -> Profile | None:
    for p in details.participants:
        if p.participant.user_id == user_id:
            return p.profile
    return None


class CreateDirectRequest(BaseModel):
    other_user_id: UUID


class CreateGroupRequest(BaseModel):
    name: str
    participant_ids: list[UUID] = []
    team_id: UUID | None = None


class TeamChatRequest(BaseModel):
    team_id: UUID
    team_name: str
    type: ChatType = ChatType.TEAM


class MuteRequest(BaseModel):
    muted: bool


class UnreadCountResponse(BaseModel):
    unread_count: int


def to_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse.model_validate(conversation, from_attributes=True)
