from typing import Optional

from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Reference client configuration, read from ``TIMETRACK_*`` variables."""

    API_URL: str = "http://localhost:8000"
    # Derived from API_URL when unset (http -> ws, https -> wss).
    WS_URL: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    TICK_SECONDS: float = 1.0
    RESYNC_SECONDS: float = 30.0

    IDLE_TIMEOUT_SECONDS: int = 600
    IDLE_CHECK_SECONDS: float = 5.0

    POLL_MIN_SECONDS: float = 5.0
    POLL_MAX_SECONDS: float = 60.0
    POLL_FACTOR: float = 1.3
    POLL_ERROR_FACTOR: float = 2.0

    RECONNECT_MAX_ATTEMPTS: int = 10
    RECONNECT_BASE_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0
    REALTIME_CONFIRM_SECONDS: float = 2.0

    CACHE_DIR: str = "~/.timetrack"
    RECENT_ENTRIES_LIMIT: int = 20

    class Config:
        env_prefix = "TIMETRACK_"
        env_file = None
        extra = "ignore"

    @property
    def ws_url(self) -> str:
        if self.WS_URL:
            return self.WS_URL
        base = self.API_URL.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"
