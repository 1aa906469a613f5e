from __future__ import annotations

import uuid
from datetime import datetime, timezone

from chat_realtime.application.dto.message import MessageWithSender, SendMessageDTO
from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.exceptions import ValidationError
from chat_realtime.application.policies.permissions import assert_conversation_access
from chat_realtime.application.uow import UnitOfWork
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.value_objects.enums import MessageType


async def send_message(
    dto: SendMessageDTO,
    principal: Principal,
    uow: UnitOfWork,
) -> Message:
    """Persist a message and bump the conversation's activity timestamp."""
    conversation = await uow.conversations.get_by_id(dto.conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)

    if dto.type == MessageType.TEXT and not (dto.content and dto.content.strip()):
        raise ValidationError("Text message cannot be empty")
    if dto.type in (MessageType.IMAGE, MessageType.FILE) and not dto.metadata.get("file_url"):
        raise ValidationError("Attachment message needs metadata.file_url")

    now = datetime.now(timezone.utc)
    msg = Message(
        id=uuid.uuid4(),
        conversation_id=dto.conversation_id,
        sender_id=principal.user_id,
        content=dto.content or None,
        type=dto.type.value,
        created_at=now,
        updated_at=now,
        metadata=dict(dto.metadata),
    )
    msg = await uow.messages_w.create(msg)
    await uow.conversations_w.touch_updated_at(dto.conversation_id, now)
    await uow.commit()
    return msg


async def list_messages(
    conversation_id: uuid.UUID,
    principal: Principal,
    before: datetime | None,
    limit: int,
    uow: UnitOfWork,
) -> list[Message]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    return await uow.messages.list_messages(conversation_id, before=before, limit=limit)


async def mark_as_read(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> datetime:
    """Move the caller's read cursor to now. Returns the new cursor."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    now = datetime.now(timezone.utc)
    await uow.participants_w.touch_last_read_at(conversation_id, principal.user_id, now)
    await uow.commit()
    return now


async def attach_senders(messages: list[Message], uow: UnitOfWork) -> list[MessageWithSender]:
    """Pair each message with its sender's profile, ``None`` where no profile exists."""
    if not messages:
        return []
    profiles = await uow.profiles.get_many({m.sender_id for m in messages})
    return [MessageWithSender(m, profiles.get(m.sender_id)) for m in messages]
