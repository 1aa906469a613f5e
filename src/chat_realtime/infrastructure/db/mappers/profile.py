from __future__ import annotations

from chat_realtime.domain.entities.profile import Profile
from chat_realtime.infrastructure.db.models.profile import ProfileModel


def model_to_entity(model: ProfileModel) -> Profile:
    return Profile(
        id=model.id,
        full_name=model.full_name,
        avatar_url=model.avatar_url,
        email=model.email,
    )
