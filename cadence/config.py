"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Cadence configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/cadence.db"))

    # Turso (hosted libSQL) — when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Generation Service (workflow engine webhook)
    generation_webhook_url: str = Field(default="")
    generation_api_key: str = Field(default="")

    # Email / visualization functions
    functions_base_url: str = Field(default="")
    service_key: str = Field(default="")

    http_timeout_seconds: float = Field(default=120.0)

    # Timezones
    report_timezone: str = Field(default="America/New_York")
    default_task_timezone: str = Field(default="America/New_York")

    # Report dispatch
    report_batch_size: int = Field(default=10)
    report_delay_seconds: float = Field(default=15.0)
    pending_delivery_batch_size: int = Field(default=20)

    # Task dispatch
    task_batch_size: int = Field(default=50)
    task_window_seconds: int = Field(default=120)
    task_failure_policy: str = Field(default="advance")

    # Claims and recovery
    claim_lease_seconds: int = Field(default=900)
    stale_execution_seconds: int = Field(default=1800)

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)
    dispatch_secret: str = Field(default="")

    # In-process cron (when no external scheduler calls the endpoints)
    cron_enabled: bool = Field(default=False)
    report_cron_minutes: int = Field(default=60)
    task_cron_minutes: int = Field(default=5)
    pending_cron_minutes: int = Field(default=5)
    pregenerate_hours_ahead: float = Field(default=0.0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
