"""
Application Configuration using Pydantic Settings.

Every setting can be provided via environment variables or a `.env` file.
"""

import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_name: str = "Container Schedules API"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8001

    # Database
    database_url: str = ""
    sql_echo: bool = False
    testing: bool = False

    def model_post_init(self, __context):
        """Post-initialization hook to check environment variables."""
        if os.getenv('TESTING', '').lower() in ('true', '1', 'yes'):
            self.testing = True

    # CORS
    cors_origins: str = "*"

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_lock_path: str = ""
    scheduler_lock_stale_seconds: int = 0
    scheduler_poll_seconds: int = 60
    scheduler_max_workers: int = 20
    scheduler_dispatch_timeout_seconds: float = 300.0
    # 0 keeps failing schedules active forever; N > 0 demotes after N consecutive failures.
    scheduler_max_consecutive_failures: int = 0
    default_timezone: str = "UTC"

    # Container control API used by the HTTP action dispatcher
    container_api_url: str = ""
    container_api_token: str = ""
    container_api_timeout_seconds: float = 30.0

    # Error handling
    expose_error_details: bool = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        if not self.database_url:
            base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
            db_path = os.path.join(base_dir, "instance", "container_schedules.db")
            self.database_url = f"sqlite:///{db_path}"

        # Lower-level database utilities read DATABASE_URL directly.
        os.environ.setdefault("DATABASE_URL", self.database_url)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def poll_seconds(self) -> int:
        return max(10, min(int(self.scheduler_poll_seconds or 60), 300))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
