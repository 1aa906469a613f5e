from __future__ import annotations

from chat_realtime.domain.entities.participant import Participant
from chat_realtime.infrastructure.db.models.participant import ParticipantModel


def model_to_entity(model: ParticipantModel) -> Participant:
    return Participant(
        id=model.id,
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        joined_at=model.joined_at,
        last_read_at=model.last_read_at,
        is_muted=model.is_muted,
    )


def entity_to_model(entity: Participant) -> ParticipantModel:
    return ParticipantModel(
        id=entity.id,
        conversation_id=entity.conversation_id,
        user_id=entity.user_id,
        joined_at=entity.joined_at,
        last_read_at=entity.last_read_at,
        is_muted=entity.is_muted,
    )
