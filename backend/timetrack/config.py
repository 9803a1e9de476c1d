from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None
    ALGORITHM: str = "HS256"
    # Token lifetime in minutes. Native clients refresh opportunistically, so
    # keep this long enough to cover a working day.
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 600
    DEBUG: bool = False

    # DATABASE_URL is injected in production (Postgres). Local development and
    # the test-suite fall back to SQLite.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./timetrack.db")

    ALLOWED_ORIGINS: str = "http://localhost:3010,http://localhost:5173,http://localhost:3011"

    # Auto-stop threshold applied to new users (seconds of inactivity).
    DEFAULT_IDLE_TIMEOUT_SECONDS: int = 600

    # Pagination ceiling for GET /api/time-entries.
    TIME_ENTRIES_MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
