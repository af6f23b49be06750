from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    VERSION: str = "0.1.0"
    PROJECT_NAME: str = "jobqueue"

    DEBUG: bool = False

    # Database settings
    DB_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Worker Configuration
    WORKER_ID: Optional[str] = None
    WORKER_COUNT: int = 3
    POLL_INTERVAL: float = 1.0
    MAX_POLL_INTERVAL: float = 30.0
    BACKOFF_FACTOR: float = 1.5
    LEASE_DURATION: float = 300.0
    HANDLER_TIMEOUT: float = 300.0
    RECLAIM_INTERVAL: float = 30.0
    DRAIN_TIMEOUT: float = 60.0

    # Retry backoff for failed jobs: base * 2^attempt, capped
    RETRY_BACKOFF_BASE: float = 30.0
    RETRY_BACKOFF_MAX: float = 3600.0

    # Scheduler
    SCHEDULER_TICK_INTERVAL: float = 30.0

    # Stats
    STATS_WINDOW_HOURS: float = 24.0

    # Logging
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # Application
    ENVIRONMENT: str = "development"

    # CORS settings
    CORS_ORIGINS: List[str] = ["*"]
    CORS_METHODS: List[str] = ["*"]
    CORS_HEADERS: List[str] = ["*"]
    ALLOW_CREDENTIALS: bool = True

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if "://" in self.DB_URL:
            return self.DB_URL
        return f"postgresql://{self.DB_URL}"

    @property
    def async_database_url(self) -> str:
        """Async version for asyncpg/aiosqlite processes."""
        if "://" in self.DB_URL:
            return self.DB_URL
        return f"postgresql+asyncpg://{self.DB_URL}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
