"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Jira_Telegram_Notifier"
    ENV: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "sqlite:///./bot_data.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    # Seconds a SQLite session waits for another process's write lock.
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Jira
    JIRA_HOST: str | None = None
    JIRA_USERNAME: str | None = None
    JIRA_API_TOKEN: str | None = None
    # Numeric ids of the custom fields holding the Telegram username / full name.
    JIRA_CF_TELEGRAM_USERNAME: str = "10152"
    JIRA_CF_TELEGRAM_NAME: str = "10153"
    JIRA_MAX_RESULTS: int = 20
    JIRA_TIMEOUT_SECONDS: int = 30

    # Telegram
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_WEBHOOK_SECRET: str | None = None

    # Notification engine
    NOTIFICATION_POLL_INTERVAL_SECONDS: int = 60
    NOTIFICATION_LOOKBACK_SECONDS: int = 300
    STATUS_CHANGE_MATCH_TOLERANCE_SECONDS: int = 60
    # Undelivered transitions are retried this long after first being recorded (0 = window only).
    NOTIFICATION_RETRY_HORIZON_SECONDS: int = 3600
    NOTIFICATION_MAX_WORKERS: int = 1

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def jira_base_url(self) -> str | None:
        """Jira base URL with scheme, as the host may be configured bare."""
        if not self.JIRA_HOST:
            return None
        host = self.JIRA_HOST.rstrip("/")
        if host.startswith("http://") or host.startswith("https://"):
            return host
        return f"https://{host}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
