from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_realtime.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_realtime.api.v1.routers import conversations, health, messages, ws
from chat_realtime.application.exceptions import (
    ForbiddenError,
    NotFoundError,
    RefreshFailure,
    SubscriptionError,
    ValidationError,
)
from chat_realtime.config import settings
from chat_realtime.infrastructure.bus.redis_change_feed import (
    RedisChangeFeed,
    RedisChangePublisher,
)
from chat_realtime.infrastructure.db.uow import make_uow_factory
from chat_realtime.services.subscription_registry import TopicSubscriptionRegistry
from chat_realtime.services.typing_indicator import TypingBroadcaster

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    logger.info("Redis connection pool created")

    publisher = RedisChangePublisher(app.state.redis, settings.CHANGE_FEED_PREFIX)
    feed = RedisChangeFeed(
        app.state.redis,
        settings.CHANGE_FEED_PREFIX,
        reconnect_base=settings.FEED_RECONNECT_BASE_SECONDS,
        reconnect_max=settings.FEED_RECONNECT_MAX_SECONDS,
        dedup_window=settings.FEED_DEDUP_WINDOW,
    )
    app.state.publisher = publisher
    app.state.uow_factory = make_uow_factory(publisher)
    app.state.registry = TopicSubscriptionRegistry(feed)
    app.state.broadcaster = TypingBroadcaster(
        settings.TYPING_SIGNAL_MODE, publisher, app.state.uow_factory,
    )

    yield

    app.state.registry.release_all()
    await feed.aclose()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Team Chat Realtime Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(conversations.router)
    app.include_router(messages.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(RefreshFailure)
    async def _refresh(_req: Request, exc: RefreshFailure) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail})

    @app.exception_handler(SubscriptionError)
    async def _subscription(_req: Request, exc: SubscriptionError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail})
