# jobview/core/config.py

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application Settings
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    allowed_cors_urls: str = "http://localhost:5173"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./jobview.db"
    database_echo: bool = False

    # Redis base fields (Celery broker/backend)
    redis_host: str = "localhost"
    redis_port: str = "6379"
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    # Export engine
    export_storage_dir: str = "/tmp/jobview_exports"
    export_worker_capacity: int = 5
    export_batch_size: int = 1000
    export_tick_interval_seconds: float = 5.0
    export_scheduler_embedded: bool = True

    # Admission limits
    export_max_pending_tasks: int = 100
    export_max_daily_per_user: int = 20
    export_max_active_per_user: int = 5

    # Retention
    export_retention_hours: int = 24
    export_record_retention_days: int = 30
    export_stall_timeout_minutes: int = 30
    export_sweep_interval_minutes: int = 60

    #
    # ---------------------------
    #  REDIS ACCESS PROPERTIES
    # ---------------------------
    #
    @property
    def redis_url(self) -> str:
        """Construct the Redis URL."""
        host = self.redis_host or "localhost"
        port = self.redis_port or "6379"

        if self.redis_username and self.redis_password:
            return f"redis://{self.redis_username}:{self.redis_password}@{host}:{port}"
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{host}:{port}"
        else:
            return f"redis://{host}:{port}"

    @property
    def celery_broker(self) -> str:
        """Construct the Redis URL for Celery broker (DB 1)."""
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """Construct the Redis URL for Celery backend (DB 2)."""
        return f"{self.redis_url}/2"

    #
    # ---------------------------
    #  EXPORT HELPERS
    # ---------------------------
    #
    @property
    def export_storage_path(self) -> Path:
        return Path(self.export_storage_dir)

    @property
    def cors_origins(self) -> list[str]:
        return [url.strip() for url in self.allowed_cors_urls.split(",") if url.strip()]


#
# Instantiate settings
#
settings = Settings()
