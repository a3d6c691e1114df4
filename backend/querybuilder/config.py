"""Settings management for the query-builder engine."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Analytics query engine (consumed through services/query_engine_client.py)
    QUERY_ENGINE_URL: str = "http://localhost:3472"
    QUERY_ENGINE_API_KEY: Optional[str] = None
    QUERY_ENGINE_TIMEOUT_SECONDS: float = 30.0

    # Empty-range fallback defaults; requests may override per call
    ENABLE_EMPTY_RANGE_FALLBACK: bool = True
    FALLBACK_WINDOW_SECONDS: List[int] = [86400, 7 * 86400, 31 * 86400]
    MAX_FALLBACK_RANGE_SECONDS: int = 31 * 86400

    # Observability
    SENTRY_DSN: Optional[str] = None
    ENVIRONMENT: str = "development"
    RELEASE_VERSION: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]
