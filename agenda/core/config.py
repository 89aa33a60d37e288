from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Agenda Scheduling API"
    database_url: str = (
        "postgresql+psycopg2://agenda:agenda@db:5432/agenda"  # pragma: allowlist secret
    )
    redis_url: str = "redis://redis:6379/0"
    timezone: str = "America/Sao_Paulo"
    cors_origins: list[str] = ["http://localhost:3000"]
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60

    default_slot_interval_minutes: int = 15
    default_max_advance_days: int = 60
    slot_retention_days: int = 30
    booking_lock_timeout_seconds: float = 5.0

    availability_cache_backend: str = "memory"
    availability_cache_ttl_seconds: int = 300

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
