from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://127.0.0.1:8000"
    WS_BASE_URL: str = "ws://127.0.0.1:8000"
    AUTH_TOKEN: str = ""
    USER_ID: int | str | None = None

    # Off means no sockets at all: REST for writes, polling for chat.
    LIVE_CHANNELS_ENABLED: bool = True

    HTTP_TIMEOUT_SECONDS: float = 30.0

    CACHE_TTL_SECONDS: float = 1800.0
    CACHE_SWEEP_INTERVAL_SECONDS: float = 600.0

    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0

    RECONNECT_BASE_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0
    RECONNECT_EXPONENT_CAP: int = 5
    WS_HANDSHAKE_TIMEOUT_SECONDS: float = 10.0

    RECONCILE_WINDOW_SECONDS: float = 30.0
    PAGE_SIZE: int = 20
    POLL_INTERVAL_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"

    @property
    def notifications_ws_url(self) -> str:
        return f"{self.WS_BASE_URL.rstrip('/')}/ws/notifications/?token={self.AUTH_TOKEN}"

    def chat_ws_url(self, conversation_id: int | str) -> str:
        return f"{self.WS_BASE_URL.rstrip('/')}/ws/chat/{conversation_id}/?token={self.AUTH_TOKEN}"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
