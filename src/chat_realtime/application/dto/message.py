from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.value_objects.enums import MessageType


@dataclass(frozen=True, slots=True)
class SendMessageDTO:
    conversation_id: UUID
    type: MessageType = MessageType.TEXT
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MessageWithSender:
    message: Message
    sender: Profile | None = None
