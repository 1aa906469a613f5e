from __future__ import annotations

from chat_realtime.domain.entities.message import Message
from chat_realtime.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        content=model.content,
        type=model.type,
        created_at=model.created_at,
        updated_at=model.updated_at,
        metadata=dict(model.metadata_ or {}),
    )


def entity_to_model(entity: Message) -> MessageModel:
    return MessageModel(
        id=entity.id,
        conversation_id=entity.conversation_id,
        sender_id=entity.sender_id,
        content=entity.content,
        type=entity.type,
        metadata_=dict(entity.metadata),
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )
