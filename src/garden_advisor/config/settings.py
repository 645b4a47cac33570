"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "garden-advisor"
    app_env: str = "dev"
    database_url: str = ""
    encryption_key: str = ""

    claude_model: str = "claude-sonnet-4-20250514"
    claude_base_url: str = "https://api.anthropic.com/v1"
    claude_max_tokens: int = Field(default=4096, ge=1)
    claude_chat_max_tokens: int = Field(default=2048, ge=1)
    kimi_model: str = "moonshot-v1-8k"
    kimi_base_url: str = "https://api.moonshot.ai/v1"
    llm_timeout_s: float = Field(default=60.0, ge=0.5)

    analysis_cron_hour: int = Field(default=6, ge=0, le=23)
    analysis_cron_minute: int = Field(default=0, ge=0, le=59)
    analysis_timezone: str = "UTC"

    zone_job_retry_limit: int = Field(default=3, ge=0)
    zone_job_retry_delay_s: int = Field(default=10, ge=0)
    zone_job_expire_s: int = Field(default=300, ge=1)

    worker_concurrency: int = Field(default=2, ge=1)
    worker_poll_interval_s: float = Field(default=2.0, ge=0.05)

    weather_base_url: str = "https://api.open-meteo.com/v1/forecast"
    weather_timeout_s: float = Field(default=10.0, ge=0.5)
    weather_cache_max_age_s: int = Field(default=6 * 3600, ge=0)

    care_log_window_days: int = Field(default=14, ge=1)
    sensor_window_hours: int = Field(default=48, ge=1)
    task_history_days: int = Field(default=7, ge=0)
    photo_window_days: int = Field(default=7, ge=1)
    photo_recent_hours: int = Field(default=24, ge=1)
    photo_top_n: int = Field(default=10, ge=0)
    photo_timeout_s: float = Field(default=10.0, ge=0.5)
    photo_public_base_url: str = ""

    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"

    model_config = SettingsConfigDict(
        env_prefix="GARDEN_ADVISOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_encryption_key(self) -> str:
        return self.encryption_key or os.getenv("ENCRYPTION_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
