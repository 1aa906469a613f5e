from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from chat_realtime.domain.value_objects.enums import TypingSignalMode


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"

    CHANGE_FEED_PREFIX: str = "changes"
    FEED_RECONNECT_BASE_SECONDS: float = 0.5
    FEED_RECONNECT_MAX_SECONDS: float = 30.0
    FEED_DEDUP_WINDOW: int = 512

    TYPING_TIMEOUT_SECONDS: float = 3.0
    TYPING_MAX_ACTIVE: int = 32
    TYPING_SIGNAL_MODE: TypingSignalMode = TypingSignalMode.PRESENCE

    MESSAGE_PAGE_SIZE: int = 50

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: list[str] = ["*"]

    WS_HEARTBEAT_SECONDS: int = 30

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
