from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application settings
    APP_NAME: str = "EnrollSync"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Database settings
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./enrollsync_local.db"
    REMOTE_DATABASE_URL: Optional[str] = None
    DATABASE_ECHO: bool = False

    # Auto sync settings
    SYNC_AUTO_SYNC_ENABLED: bool = True
    SYNC_AUTO_SYNC_INTERVAL_MINUTES: int = 5
    SYNC_ERROR_COOLDOWN_SECONDS: int = 60
    SYNC_CONNECT_TIMEOUT_SECONDS: float = 15.0

    # Batching settings
    SYNC_PAGE_SIZE: int = 1000
    SYNC_BATCH_SIZE_THRESHOLD: int = 1000
    SYNC_SMALL_BATCH_LIMIT: int = 100

    # Incremental sync and conflicts
    SYNC_INCREMENTAL_DEFAULT_DAYS: int = 7
    SYNC_CONFLICT_TIE_POLICY: str = "remote_wins"

    # Offline queue settings
    OFFLINE_QUEUE_MAX_RETRIES: int = 3
    OFFLINE_QUEUE_RETENTION_DAYS: int = 7

    @field_validator("LOCAL_DATABASE_URL")
    @classmethod
    def validate_local_database_url(cls, v):
        if not v:
            raise ValueError("LOCAL_DATABASE_URL is required")
        return v

    @field_validator("REMOTE_DATABASE_URL")
    @classmethod
    def validate_remote_database_url(cls, v):
        # An empty string in .env means "sync disabled"
        if v is not None and not v.strip():
            return None
        return v

    @field_validator(
        "SYNC_AUTO_SYNC_INTERVAL_MINUTES",
        "SYNC_PAGE_SIZE",
        "SYNC_BATCH_SIZE_THRESHOLD",
        "SYNC_SMALL_BATCH_LIMIT",
        "OFFLINE_QUEUE_MAX_RETRIES",
    )
    @classmethod
    def validate_positive(cls, v, info):
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("SYNC_CONFLICT_TIE_POLICY")
    @classmethod
    def validate_tie_policy(cls, v):
        if v not in ("remote_wins", "local_wins"):
            raise ValueError("SYNC_CONFLICT_TIE_POLICY must be 'remote_wins' or 'local_wins'")
        return v


settings = Settings()
