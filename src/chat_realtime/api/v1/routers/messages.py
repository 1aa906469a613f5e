from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from chat_realtime.api.deps import CurrentPrincipal, UoWDep
from chat_realtime.api.v1.schemas.message import (
    MessageResponse,
    ReadCursorResponse,
    SendMessageRequest,
)
from chat_realtime.application.dto.message import SendMessageDTO
from chat_realtime.config import settings
from chat_realtime.services import message_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["messages"])


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    before: datetime | None = Query(None),
    limit: int = Query(settings.MESSAGE_PAGE_SIZE, ge=1, le=200),
) -> list[MessageResponse]:
    msgs = await message_service.list_messages(conversation_id, principal, before, limit, uow)
    rows = await message_service.attach_senders(msgs, uow)
    return [MessageResponse.from_row(row) for row in rows]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> MessageResponse:
    dto = SendMessageDTO(
        conversation_id=conversation_id,
        type=body.type,
        content=body.content,
        metadata=body.metadata,
    )
    msg = await message_service.send_message(dto, principal, uow)
    [row] = await message_service.attach_senders([msg], uow)
    return MessageResponse.from_row(row)


@router.post("/{conversation_id}/read", response_model=ReadCursorResponse)
async def mark_read(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ReadCursorResponse:
    ts = await message_service.mark_as_read(conversation_id, principal, uow)
    return ReadCursorResponse(last_read_at=ts)
