from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    DATABASE_PATH: str = "/data/media_queue.db"
    UPLOAD_PATH: str = "/data/uploads"

    # Catalog
    CATALOG_CACHE_TTL_MINUTES: int = 5

    # Playback
    IMAGE_DEFAULT_DURATION_SECONDS: float = 10
    VIDEO_DEFAULT_DURATION_SECONDS: float = 30
    VIDEO_END_THRESHOLD_SECONDS: float = 0.5
    VIDEO_END_DEBOUNCE_SECONDS: float = 0.5

    # Background loops
    RECONCILE_INTERVAL_SECONDS: int = 30
    ARCHIVE_INTERVAL_SECONDS: int = 86400  # 24h
    ARCHIVE_RETENTION_DAYS: int = 0  # 0 disables, overridden by the auto_archive_days setting row

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_HOST: str = "0.0.0.0"
    HTTP_SERVER_PORT: int = 3000
    ADMIN_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
