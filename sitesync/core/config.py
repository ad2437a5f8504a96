from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logger import get_logger


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    database_url: str = Field(..., alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW")

    master_service_base_url: str = Field("", alias="MASTER_SERVICE_BASE_URL")
    master_service_bearer_token: str = Field("", alias="MASTER_SERVICE_BEARER_TOKEN")
    master_sites_path: str = Field("/amsp/api/masterdata/v1/sites", alias="MASTER_SITES_PATH")

    http_connect_timeout_seconds: float = Field(default=30.0, alias="HTTP_CONNECT_TIMEOUT_SECONDS")
    http_read_timeout_seconds: float = Field(default=300.0, alias="HTTP_READ_TIMEOUT_SECONDS")
    http_max_connections: int = Field(default=100, alias="HTTP_MAX_CONNECTIONS")

    # Large site lists occasionally arrive as truncated chunked bodies; retry generously.
    master_fetch_max_attempts: int = Field(default=5, alias="MASTER_FETCH_MAX_ATTEMPTS")
    master_fetch_backoff_base_seconds: float = Field(default=2.0, alias="MASTER_FETCH_BACKOFF_BASE_SECONDS")
    master_fetch_backoff_multiplier: float = Field(default=2.0, alias="MASTER_FETCH_BACKOFF_MULTIPLIER")
    master_fetch_backoff_max_seconds: float = Field(default=30.0, alias="MASTER_FETCH_BACKOFF_MAX_SECONDS")
    master_fetch_max_elapsed_seconds: float = Field(default=600.0, alias="MASTER_FETCH_MAX_ELAPSED_SECONDS")

    site_detail_source: str = Field("db", alias="SITE_DETAIL_SOURCE")
    starfish_api_base_url: str = Field("", alias="STARFISH_API_BASE_URL")
    starfish_api_username: str = Field("", alias="STARFISH_API_USERNAME")
    starfish_api_password: str = Field("", alias="STARFISH_API_PASSWORD")
    starfish_api_timeout_seconds: float = Field(default=60.0, alias="STARFISH_API_TIMEOUT_SECONDS")

    site_sync_enabled: bool = Field(default=True, alias="SITE_SYNC_ENABLED")
    site_sync_cron: str = Field("0 */2 * * *", alias="SITE_SYNC_CRON")
    # When > 0 the sync runs at a fixed rate instead of the cron schedule.
    site_sync_interval_minutes: int = Field(default=0, alias="SITE_SYNC_INTERVAL_MINUTES")
    site_sync_item_delay_ms: int = Field(default=100, alias="SITE_SYNC_ITEM_DELAY_MS")

    heartbeat_url: str = Field("", alias="HEARTBEAT_URL")
    heartbeat_interval_seconds: int = Field(default=120, alias="HEARTBEAT_INTERVAL_SECONDS")

    job_details_retention_days: int = Field(default=90, alias="JOB_DETAILS_RETENTION_DAYS")
    job_maintenance_cron: str = Field("30 3 * * *", alias="JOB_MAINTENANCE_CRON")

    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    @model_validator(mode="after")
    def validate_master_service(self):
        if not (self.master_service_base_url or "").strip():
            logger = get_logger("settings")
            logger.warning("MASTER_SERVICE_BASE_URL is not configured; site_sync will fail until it is set")
        return self

    @property
    def detail_source(self) -> str:
        v = (self.site_detail_source or "db").strip().lower()
        return v if v in {"db", "starfish"} else "db"

    @property
    def starfish_auth(self) -> Optional[tuple[str, str]]:
        user = (self.starfish_api_username or "").strip()
        password = self.starfish_api_password or ""
        if user and password:
            return user, password
        return None

    @property
    def is_prod(self) -> bool:
        return (self.app_env or "").strip().lower() in {"prod", "production"}


default_settings = Settings()
settings = default_settings
