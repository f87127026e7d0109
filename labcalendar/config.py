"""Application configuration via environment variables."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings loaded from .env or environment."""

    DATABASE_URL: str = "sqlite:///./labcalendar.db"
    LAB_API_BASE_URL: str = "http://localhost:3000"
    LAB_API_TOKEN: str = ""
    LAB_API_TIMEOUT: Optional[float] = None  # no timeout unless set
    LAB_TIMEZONE: str = "Europe/Paris"
    BUSINESS_HOURS_START: str = "08:00"
    BUSINESS_HOURS_END: str = "19:00"
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    SESSION_IDLE_SECONDS: int = 8 * 3600  # per-tab state is dropped after this much inactivity

    class Config:
        env_file = ".env"


settings = Settings()
