from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from chat_realtime.api.deps import get_verifier
from chat_realtime.api.v1.schemas.conversation import ConversationDetailsResponse
from chat_realtime.api.v1.schemas.message import MessageResponse
from chat_realtime.application.dto.conversation import ConversationDetails
from chat_realtime.application.dto.message import MessageWithSender
from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.exceptions import AppError, RefreshFailure
from chat_realtime.config import settings
from chat_realtime.domain.entities.message import Message
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.infrastructure.ws.protocol import WsInbound, WsOutbound
from chat_realtime.services import conversation_service, message_service
from chat_realtime.services.chat_view import ChatViewController
from chat_realtime.services.conversation_aggregator import OnError
from chat_realtime.services.realtime_client import RealtimeClient
from chat_realtime.services.subscription_registry import SubscriptionHandle

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

_MESSAGE_FRAMES = {
    ChangeKind.INSERT: "message.created",
    ChangeKind.UPDATE: "message.updated",
}


async def _authenticate(token: str) -> Principal | None:
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


@dataclass(slots=True)
class _MessageFrame:
    """Outbound message frame whose sender profiles are resolved on send."""

    type: str
    conversation_id: UUID
    messages: list[Message]
    batch: bool = False


@dataclass(slots=True)
class _Joined:
    view: ChatViewController
    handles: list[SubscriptionHandle] = field(default_factory=list)


class ChatSocketSession:
    """One WebSocket connection bound to one RealtimeClient.

    Feed callbacks run synchronously, so outbound frames go through a queue
    drained by a writer task. Message frames are enriched with the sender's
    profile by the writer, which keeps them in arrival order.
    """

    def __init__(
        self,
        ws: WebSocket,
        principal: Principal,
        make_client: Callable[[OnError], RealtimeClient],
    ) -> None:
        self._ws = ws
        self._principal = principal
        self._outbox: asyncio.Queue[WsOutbound | _MessageFrame] = asyncio.Queue()
        self._conversations: dict[UUID, _Joined] = {}
        self._client = make_client(self._on_error)

    def send(self, event_type: str, data: dict[str, Any]) -> None:
        self._outbox.put_nowait(WsOutbound(type=event_type, data=data))

    async def run(self) -> None:
        pkey = self._principal.principal_key
        writer = asyncio.create_task(self._write_loop(), name=f"ws-writer-{pkey}")
        heartbeat = asyncio.create_task(self._heartbeat(), name=f"ws-heartbeat-{pkey}")
        unsubscribe = self._client.subscribe_to_conversations(self._on_conversations)
        try:
            await self._push_conversations()
            await self._read_loop()
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("WS error for %s", pkey)
        finally:
            heartbeat.cancel()
            writer.cancel()
            unsubscribe()
            self._client.unsubscribe_all()
            self._conversations.clear()

    def _on_conversations(self, items: list[ConversationDetails]) -> None:
        self.send(
            "conversations.updated",
            {
                "conversations": [
                    ConversationDetailsResponse.from_details(d).model_dump(mode="json")
                    for d in items
                ]
            },
        )

    def _on_error(self, error: AppError) -> None:
        self.send("error", {"code": type(error).__name__, "detail": error.detail})

    async def _push_conversations(self) -> None:
        try:
            await self._client.get_conversations()
        except RefreshFailure as exc:
            self._on_error(exc)

    async def _write_loop(self) -> None:
        while True:
            item = await self._outbox.get()
            frame = await self._render(item) if isinstance(item, _MessageFrame) else item
            await self._ws.send_text(frame.model_dump_json())

    async def _render(self, item: _MessageFrame) -> WsOutbound:
        try:
            async with self._client_uow() as uow:
                rows = await message_service.attach_senders(item.messages, uow)
        except Exception:
            logger.warning("Sender lookup failed for %s", item.conversation_id, exc_info=True)
            rows = [MessageWithSender(m) for m in item.messages]
        payloads = [MessageResponse.from_row(row).model_dump(mode="json") for row in rows]
        if item.batch:
            data = {"conversation_id": str(item.conversation_id), "messages": payloads}
        else:
            data = payloads[0]
        return WsOutbound(type=item.type, data=data)

    async def _heartbeat(self) -> None:
        interval = settings.WS_HEARTBEAT_SECONDS
        while True:
            await asyncio.sleep(interval)
            self.send("pong", {})

    async def _read_loop(self) -> None:
        while True:
            raw = await self._ws.receive_text()
            try:
                msg = WsInbound.model_validate_json(raw)
            except PydanticValidationError:
                self.send("error", {"code": "invalid_payload"})
                continue

            if msg.type == "ping":
                self.send("pong", {})
                continue

            conversation_id = msg.conversation_id
            if msg.needs_conversation and conversation_id is None:
                self.send("error", {"code": "invalid_data", "type": msg.type})
            elif msg.type == "subscribe":
                await self._subscribe(conversation_id)
            elif msg.type == "unsubscribe":
                self._unsubscribe(conversation_id)
            elif msg.type == "typing":
                if conversation_id in self._conversations:
                    await self._client.broadcast_typing(conversation_id, self._principal.user_id)
            else:
                self.send("error", {"code": "unknown_type", "type": msg.type})

    def _on_view_event(self, conversation_id: UUID, kind: ChangeKind, message: Message) -> None:
        if kind == ChangeKind.DELETE:
            self.send("message.deleted", {"conversation_id": str(conversation_id), "id": str(message.id)})
            return
        self._outbox.put_nowait(_MessageFrame(_MESSAGE_FRAMES[kind], conversation_id, [message]))

    async def _subscribe(self, conversation_id: UUID) -> None:
        if conversation_id in self._conversations:
            return
        cid = str(conversation_id)
        view: ChatViewController | None = None
        handles: list[SubscriptionHandle] = []
        try:
            async with self._client_uow() as uow:
                await conversation_service.get_conversation(conversation_id, self._principal, uow)
            view = self._client.open_chat_view(
                conversation_id,
                on_event=lambda kind, m: self._on_view_event(conversation_id, kind, m),
            )
            handles.append(
                self._client.subscribe_to_typing_indicators(
                    conversation_id,
                    self._principal.user_id,
                    lambda uid, on: self.send(
                        "typing",
                        {"conversation_id": cid, "user_id": str(uid), "is_typing": on},
                    ),
                )
            )
            history = await view.load(settings.MESSAGE_PAGE_SIZE)
        except AppError as exc:
            if view is not None:
                self._client.close_chat_view(view)
            for handle in handles:
                self._client.unsubscribe(handle)
            self._on_error(exc)
            return
        self._conversations[conversation_id] = _Joined(view, handles)
        self._outbox.put_nowait(_MessageFrame("messages.loaded", conversation_id, history, batch=True))

    def _unsubscribe(self, conversation_id: UUID) -> None:
        joined = self._conversations.pop(conversation_id, None)
        if joined is None:
            return
        self._client.close_chat_view(joined.view)
        for handle in joined.handles:
            self._client.unsubscribe(handle)

    def _client_uow(self):
        return self._ws.app.state.uow_factory()


def _client_factory(ws: WebSocket, principal: Principal) -> Callable[[OnError], RealtimeClient]:
    state = ws.app.state
    loop = asyncio.get_running_loop()

    def make(on_error: OnError) -> RealtimeClient:
        return RealtimeClient(
            principal.user_id,
            state.registry,
            state.publisher,
            state.uow_factory,
            loop,
            typing_mode=settings.TYPING_SIGNAL_MODE,
            typing_timeout=settings.TYPING_TIMEOUT_SECONDS,
            typing_max_active=settings.TYPING_MAX_ACTIVE,
            on_error=on_error,
        )

    return make


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    await websocket.accept()
    session = ChatSocketSession(websocket, principal, _client_factory(websocket, principal))
    logger.debug("WS connected: %s", principal.principal_key)
    await session.run()
    logger.debug("WS disconnected: %s", principal.principal_key)
