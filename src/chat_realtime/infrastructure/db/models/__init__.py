"""Import all models so string relationship targets resolve on first use."""
from chat_realtime.infrastructure.db.models.conversation import ConversationModel
from chat_realtime.infrastructure.db.models.message import MessageModel
from chat_realtime.infrastructure.db.models.participant import ParticipantModel
from chat_realtime.infrastructure.db.models.profile import ProfileModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "ParticipantModel",
    "ProfileModel",
]
