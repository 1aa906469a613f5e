"""Name, avatar and preview text for conversation list rows."""
from __future__ import annotations

from uuid import UUID

from chat_realtime.application.dto.conversation import ParticipantWithProfile
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.value_objects.enums import ChatType, MessageType

UNKNOWN_NAME = "Unknown"
NO_MESSAGES = "No messages yet"

_TYPE_AVATARS = {
    ChatType.TEAM: "👥",
    ChatType.COACHES: "🏀",
    ChatType.GROUP: "👥",
}

_ATTACHMENT_PREVIEWS = {
    MessageType.IMAGE: "📷 Image",
    MessageType.FILE: "📎 File",
}


def _other_participant(
    participants: list[ParticipantWithProfile], viewer_id: UUID
) -> ParticipantWithProfile | None:
    return next((p for p in participants if p.user_id != viewer_id), None)


def display_name(
    conversation: Conversation,
    participants: list[ParticipantWithProfile],
    viewer_id: UUID,
) -> str:
    if conversation.name:
        return conversation.name
    if conversation.type == ChatType.DIRECT:
        other = _other_participant(participants, viewer_id)
        if other and other.profile and other.profile.full_name:
            return other.profile.full_name
        return UNKNOWN_NAME
    return "Conversation"


def avatar(
    conversation: Conversation,
    participants: list[ParticipantWithProfile],
    viewer_id: UUID,
) -> str:
    if conversation.type in _TYPE_AVATARS:
        return _TYPE_AVATARS[ChatType(conversation.type)]
    if conversation.type == ChatType.DIRECT:
        other = _other_participant(participants, viewer_id)
        if other and other.profile and other.profile.full_name:
            return other.profile.full_name[0].upper()
        return "U"
    return "💬"


def last_message_preview(message: Message | None) -> str:
    # attachments are never previewed by content
    if message is None:
        return NO_MESSAGES
    if message.type in _ATTACHMENT_PREVIEWS:
        return _ATTACHMENT_PREVIEWS[MessageType(message.type)]
    return message.content or ""
