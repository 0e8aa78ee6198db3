"""Dependency providers and settings management."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.env import load_env_file


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    SENTRY_DSN: Optional[str] = None

    # Dashboard backend API
    API_BASE_URL: str = "http://localhost:3000/api/v1"
    API_TIMEOUT_SECONDS: float = 60.0  # insights requests are heavy
    API_MAX_RETRIES: int = 3
    CHUNK_LIMIT: int = 100

    # Report cache
    ACCOUNT_RETRY_ATTEMPTS: int = 10
    ACCOUNT_RETRY_INTERVAL_SECONDS: float = 0.1
    PREFETCH_IDLE_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    load_env_file()
    return Settings()  # type: ignore[call-arg]
