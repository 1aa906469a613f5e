from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from chat_realtime.application.dto.message import MessageWithSender
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.value_objects.enums import MessageType


class SendMessageRequest(BaseModel):
    type: MessageType = MessageType.TEXT
    content: str | None = None
    metadata: dict[str, Any] = {}


class SenderResponse(BaseModel):
    id: UUID
    full_name: str | None
    avatar_url: str | None

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str | None
    type: str
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    sender: SenderResponse | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_message(cls, message: Message, sender: Profile | None = None) -> MessageResponse:
        resp = cls.model_validate(message, from_attributes=True)
        if sender is not None:
            resp.sender = SenderResponse.model_validate(sender, from_attributes=True)
        return resp

    @classmethod
    def from_row(cls, row: MessageWithSender) -> MessageResponse:
        return cls.from_message(row.message, row.sender)


class ReadCursorResponse(BaseModel):
    last_read_at: datetime
