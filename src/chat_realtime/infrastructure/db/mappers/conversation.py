from __future__ import annotations

from chat_realtime.domain.entities.conversation import Conversation
from chat_realtime.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        team_id=model.team_id,
        type=model.type,
        name=model.name,
        icon_url=model.icon_url,
        created_by=model.created_by,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def entity_to_model(entity: Conversation) -> ConversationModel:
    return ConversationModel(
        id=entity.id,
        team_id=entity.team_id,
        type=entity.type,
        name=entity.name,
        icon_url=entity.icon_url,
        created_by=entity.created_by,
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )
