from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Response, status

from chat_realtime.api.deps import BroadcasterDep, CurrentPrincipal, UoWDep
from chat_realtime.api.v1.schemas.conversation import (
    ConversationDetailsResponse,
    ConversationResponse,
    CreateDirectRequest,
    CreateGroupRequest,
    MuteRequest,
    TeamChatRequest,
    UnreadCountResponse,
    to_response,
)
from chat_realtime.services import conversation_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationDetailsResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> list[ConversationDetailsResponse]:
    items = await conversation_service.get_conversations(principal.user_id, uow)
    return [ConversationDetailsResponse.from_details(d) for d in items]


@router.get("/unread", response_model=UnreadCountResponse)
async def unread_count(principal: CurrentPrincipal, uow: UoWDep) -> UnreadCountResponse:
    total = await conversation_service.total_unread_count(principal.user_id, uow)
    return UnreadCountResponse(unread_count=total)


@router.post("/direct", response_model=ConversationResponse)
async def open_direct(
    body: CreateDirectRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
) -> ConversationResponse:
    conv, created = await conversation_service.get_or_create_dm(body.other_user_id, principal, uow)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return to_response(conv)


@router.post("/group", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ConversationResponse:
    conv = await conversation_service.create_group_chat(
        body.name, body.participant_ids, body.team_id, principal, uow,
    )
    return to_response(conv)


@router.post("/team", response_model=ConversationResponse)
async def team_chat(
    body: TeamChatRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
) -> ConversationResponse:
    conv, created = await conversation_service.get_team_chat(
        body.team_id, body.team_name, body.type, principal, uow,
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    return to_response(conv)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ConversationResponse:
    conv = await conversation_service.get_conversation(conversation_id, principal, uow)
    return to_response(conv)


@router.put("/{conversation_id}/mute", status_code=status.HTTP_204_NO_CONTENT)
async def mute(
    conversation_id: UUID,
    body: MuteRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> None:
    await conversation_service.toggle_mute(conversation_id, body.muted, principal, uow)


@router.delete("/{conversation_id}/membership", status_code=status.HTTP_204_NO_CONTENT)
async def leave(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> None:
    await conversation_service.leave_conversation(conversation_id, principal, uow)


@router.post("/{conversation_id}/typing", status_code=status.HTTP_202_ACCEPTED)
async def typing(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    broadcaster: BroadcasterDep,
) -> None:
    await conversation_service.get_conversation(conversation_id, principal, uow)
    await broadcaster.broadcast(conversation_id, principal.user_id)
