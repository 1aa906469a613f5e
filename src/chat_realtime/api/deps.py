"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chat_realtime.application.dto.principal import Principal
from chat_realtime.application.ports.auth import TokenVerifier
from chat_realtime.application.uow import UnitOfWork
from chat_realtime.config import settings
from chat_realtime.infrastructure.auth.hs256_verifier import HS256Verifier
from chat_realtime.services.typing_indicator import TypingBroadcaster

_bearer_scheme = HTTPBearer()


async def get_uow(request: Request) -> AsyncIterator[UnitOfWork]:
    """One unit of work per request; committed writes reach the change feed."""
    async with request.app.state.uow_factory() as uow:
        yield uow


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]


def get_broadcaster(request: Request) -> TypingBroadcaster:
    return request.app.state.broadcaster


BroadcasterDep = Annotated[TypingBroadcaster, Depends(get_broadcaster)]


_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)
    return _verifier


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> Principal:
    verifier = get_verifier()
    try:
        return await verifier.verify(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
