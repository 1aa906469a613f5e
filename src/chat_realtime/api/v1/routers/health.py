from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from chat_realtime.infrastructure.db.session import AsyncSessionLocal

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    """Postgres and Redis reachability, plus how many change-feed topics are open."""
    errors: list[str] = []

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        errors.append(f"postgres: {exc}")

    try:
        await request.app.state.redis.ping()
    except Exception as exc:  # noqa: BLE001
        errors.append(f"redis: {exc}")

    body: dict[str, Any] = {"status": "ready"}
    registry = getattr(request.app.state, "registry", None)
    if registry is not None:
        body["open_topics"] = len(registry.active_topics)

    if errors:
        body.update(status="unavailable", errors=errors)
        return JSONResponse(status_code=503, content=body)
    return JSONResponse(content=body)
