from __future__ import annotations

import uuid
from datetime import datetime, timezone

from chat_realtime.application.dto.conversation import (
    ConversationDetails,
    ParticipantWithProfile,
)
from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.exceptions import NotFoundError, ValidationError
from chat_realtime.application.policies.permissions import (
    assert_conversation_access,
    assert_not_self,
)
from chat_realtime.application.uow import UnitOfWork
from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.participant import Participant
from chat_realtime.domain.value_objects.enums import ChatType
from chat_realtime.services import conversation_display

COACHES_CHAT_NAME = "Coaches Chat"


def sort_by_activity(items: list[ConversationDetails]) -> list[ConversationDetails]:
    """Most recent activity first; ties broken by id for a stable order."""
    by_id = sorted(items, key=lambda d: str(d.id))
    return sorted(by_id, key=lambda d: d.last_activity_at, reverse=True)


async def get_conversations(viewer_id: uuid.UUID, uow: UnitOfWork) -> list[ConversationDetails]:
    """Denormalised conversation list for ``viewer_id``, recomputed from storage."""
    conversations = await uow.conversations.list_for_user(viewer_id)
    result: list[ConversationDetails] = []
    for conv in conversations:
        participants = await uow.participants.list_participants(conv.id)
        profiles = await uow.profiles.get_many(p.user_id for p in participants)
        with_profiles = [ParticipantWithProfile(p, profiles.get(p.user_id)) for p in participants]

        mine = next((p for p in participants if p.user_id == viewer_id), None)
        last_message = await uow.messages.get_last(conv.id)
        unread = await uow.messages.count_unread(
            conv.id, viewer_id, mine.last_read_at if mine else None,
        )
        result.append(
            ConversationDetails(
                conversation=conv,
                participants=with_profiles,
                last_message=last_message,
                unread_count=unread,
                display_name=conversation_display.display_name(conv, with_profiles, viewer_id),
                avatar=conversation_display.avatar(conv, with_profiles, viewer_id),
                preview=conversation_display.last_message_preview(last_message),
            )
        )
    return sort_by_activity(result)


async def total_unread_count(viewer_id: uuid.UUID, uow: UnitOfWork) -> int:
    conversations = await get_conversations(viewer_id, uow)
    return sum(c.unread_count for c in conversations)


async def get_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> Conversation:
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    return conversation  # type: ignore[return-value]


async def _create_with_members(
    conversation: Conversation,
    member_ids: list[uuid.UUID],
    uow: UnitOfWork,
) -> Conversation:
    conversation = await uow.conversations_w.create(conversation)
    for user_id in member_ids:
        await uow.participants_w.add(
            Participant(
                id=uuid.uuid4(),
                conversation_id=conversation.id,
                user_id=user_id,
                joined_at=conversation.created_at,
            )
        )
    await uow.commit()
    return conversation


async def get_team_chat(
    team_id: uuid.UUID,
    team_name: str,
    chat_type: ChatType,
    principal: Principal,
    uow: UnitOfWork,
) -> tuple[Conversation, bool]:
    """Return the team's team/coaches chat, creating it if missing.

    Returns (conversation, created).
    """
    if chat_type not in (ChatType.TEAM, ChatType.COACHES):
        raise ValidationError(f"Not a team chat type: {chat_type}")

    existing = await uow.conversations.get_team_chat(team_id, chat_type.value)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    conversation = Conversation(
        id=uuid.uuid4(),
        team_id=team_id,
        type=chat_type.value,
        name=COACHES_CHAT_NAME if chat_type == ChatType.COACHES else team_name,
        icon_url=None,
        created_by=principal.user_id,
        created_at=now,
        updated_at=now,
    )
    return await _create_with_members(conversation, [principal.user_id], uow), True


async def get_or_create_dm(
    other_user_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> tuple[Conversation, bool]:
    assert_not_self(principal, other_user_id)
    existing = await uow.conversations.find_direct(principal.user_id, other_user_id)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    conversation = Conversation(
        id=uuid.uuid4(),
        team_id=None,
        type=ChatType.DIRECT.value,
        name=None,
        icon_url=None,
        created_by=principal.user_id,
        created_at=now,
        updated_at=now,
    )
    members = [principal.user_id, other_user_id]
    return await _create_with_members(conversation, members, uow), True


async def create_group_chat(
    name: str,
    participant_ids: list[uuid.UUID],
    team_id: uuid.UUID | None,
    principal: Principal,
    uow: UnitOfWork,
) -> Conversation:
    if not name.strip():
        raise ValidationError("Group chat needs a name")

    now = datetime.now(timezone.utc)
    conversation = Conversation(
        id=uuid.uuid4(),
        team_id=team_id,
        type=ChatType.GROUP.value,
        name=name.strip(),
        icon_url=None,
        created_by=principal.user_id,
        created_at=now,
        updated_at=now,
    )
    # creator first, duplicates dropped, order kept
    members = list(dict.fromkeys([principal.user_id, *participant_ids]))
    return await _create_with_members(conversation, members, uow)


async def toggle_mute(
    conversation_id: uuid.UUID,
    muted: bool,
    principal: Principal,
    uow: UnitOfWork,
) -> None:
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    await uow.participants_w.set_muted(conversation_id, principal.user_id, muted)
    await uow.commit()


async def leave_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> None:
    removed = await uow.participants_w.remove(conversation_id, principal.user_id)
    if not removed:
        raise NotFoundError("Not a participant of this conversation")
    await uow.commit()
