from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings loaded from environment variables (.env).

    Built once by the entry point and handed to the engine, the session factory
    and the dispatchers; nothing reads a module-level instance.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Project Controls Reporting"
    ENV: str = "dev"

    # DATABASE / CACHE
    DATABASE_URL: str = "sqlite:///./reporting.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    REDIS_URL: str = "redis://127.0.0.1:6379/0"

    # UPLOADS
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_MB: int = 10

    # NOTIFICATIONS
    NOTIFICATION_QUEUE_KEY: str = "reporting:notifications"
    NOTIFICATION_CHANNELS: str = "email,push"  # any of: email,sms,push,slack,teams
    IN_APP_NOTIFICATIONS: bool = True

    # SAMPLE DATA (for local testing)
    AUTO_SEED_SAMPLE: bool = False

    def notification_channels(self) -> list[str]:
        s = (self.NOTIFICATION_CHANNELS or "").strip().lower()
        return [x.strip() for x in s.split(",") if x.strip()]

    @property
    def max_upload_bytes(self) -> int:
        return int(self.MAX_UPLOAD_MB) * 1024 * 1024


def get_settings(**overrides) -> Settings:
    return Settings(**overrides)
