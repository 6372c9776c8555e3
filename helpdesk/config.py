"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Helpdesk Orders"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Per-operation limits applied with SET LOCAL inside every use-case transaction.
    # The driver itself has no timeout, so a blocked row lock would otherwise wait forever.
    DB_STATEMENT_TIMEOUT_MS: int = 15000
    DB_LOCK_TIMEOUT_MS: int = 5000

    # Celery (notification outbox)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    NOTIFICATIONS_ENABLED: bool = True

    # JWT (tokens are issued by the auth service, only verified here)
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Telegram delivery for the notification outbox
    TELEGRAM_BOT_TOKEN: str | None = None

    # Orders
    DEFAULT_ORDER_STATUS_CODE: str = "OPEN"
    DEFAULT_ORDER_PRIORITY_CODE: str = "MEDIUM"
    ORDER_LIST_MAX_LIMIT: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
