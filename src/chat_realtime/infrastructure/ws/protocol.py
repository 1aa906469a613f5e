"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel

CONVERSATION_SCOPED = frozenset({"subscribe", "unsubscribe", "typing"})


class WsInbound(BaseModel):
    """Client → Server."""

    type: str  # subscribe | unsubscribe | typing | ping
    data: dict[str, Any] = {}

    @property
    def conversation_id(self) -> UUID | None:
        try:
            return UUID(str(self.data["conversation_id"]))
        except (KeyError, ValueError):
            return None

    @property
    def needs_conversation(self) -> bool:
        return self.type in CONVERSATION_SCOPED


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # conversations.updated | messages.loaded | message.created | message.updated | message.deleted | typing | error | pong
    data: dict[str, Any] = {}
