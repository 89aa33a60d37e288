from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Celery worker and beat configuration."""

    redis_url: str = "redis://redis:6379/0"
    timezone: str = "America/Sao_Paulo"

    generation_hour: int = 2
    generation_minute: int = 0
    cleanup_day_of_week: str = "sun"
    cleanup_hour: int = 3
    cleanup_minute: int = 0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="JOBS_"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
