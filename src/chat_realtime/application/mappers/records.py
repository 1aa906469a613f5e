"""Translate change-feed row images to entities and back.

Row images arrive as JSON objects, so identifiers and timestamps are strings.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.entities.participant import Participant


def _uuid(raw: Any) -> UUID:
    return raw if isinstance(raw, UUID) else UUID(str(raw))


def _ts(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    # Postgres may emit "Z"; fromisoformat accepts it from 3.11 on
    return datetime.fromisoformat(str(raw))


def _opt_ts(raw: Any) -> datetime | None:
    return None if raw is None else _ts(raw)


def message_from_record(record: dict[str, Any]) -> Message:
    return Message(
        id=_uuid(record["id"]),
        conversation_id=_uuid(record["conversation_id"]),
        sender_id=_uuid(record["sender_id"]),
        content=record.get("content"),
        type=record.get("type") or "text",
        created_at=_ts(record["created_at"]),
        updated_at=_ts(record.get("updated_at") or record["created_at"]),
        metadata=record.get("metadata") or {},
    )


def message_to_record(message: Message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "sender_id": str(message.sender_id),
        "content": message.content,
        "type": message.type,
        "metadata": dict(message.metadata),
        "created_at": message.created_at.isoformat(),
        "updated_at": message.updated_at.isoformat(),
    }


def participant_from_record(record: dict[str, Any]) -> Participant:
    return Participant(
        id=_uuid(record["id"]),
        conversation_id=_uuid(record["conversation_id"]),
        user_id=_uuid(record["user_id"]),
        joined_at=_ts(record["joined_at"]),
        last_read_at=_opt_ts(record.get("last_read_at")),
        is_muted=bool(record.get("is_muted", False)),
    )


def participant_to_record(participant: Participant) -> dict[str, Any]:
    return {
        "id": str(participant.id),
        "conversation_id": str(participant.conversation_id),
        "user_id": str(participant.user_id),
        "joined_at": participant.joined_at.isoformat(),
        "last_read_at": participant.last_read_at.isoformat() if participant.last_read_at else None,
        "is_muted": participant.is_muted,
    }


def conversation_to_record(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": str(conversation.id),
        "team_id": str(conversation.team_id) if conversation.team_id else None,
        "type": conversation.type,
        "name": conversation.name,
        "icon_url": conversation.icon_url,
        "created_by": str(conversation.created_by) if conversation.created_by else None,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
    }


def typing_record(conversation_id: UUID, user_id: UUID, typed_at: datetime) -> dict[str, Any]:
    return {
        "conversation_id": str(conversation_id),
        "user_id": str(user_id),
        "typed_at": typed_at.isoformat(),
    }


def user_id_of(record: dict[str, Any] | None) -> UUID | None:
    if not record or record.get("user_id") is None:
        return None
    try:
        return _uuid(record["user_id"])
    except ValueError:
        return None
