"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    auth_provider: Literal["mock", "firebase"] = "firebase"
    firebase_project_id: str | None = None
    firebase_audience: str | None = None
    log_level: str = "INFO"

    max_retries: int = Field(default=3, ge=0)
    auto_retry: bool = False
    retry_backoff_seconds: float = Field(default=2.0, ge=0)
    enforce_retry_limit: bool = False
    refund_on_maintenance_cancel: bool = False

    poll_interval_seconds: float = Field(default=5.0, gt=0)
    image_timeout_seconds: float = Field(default=60.0, gt=0)
    video_timeout_seconds: float = Field(default=600.0, gt=0)
    audio_timeout_seconds: float = Field(default=120.0, gt=0)
    campaign_timeout_seconds: float = Field(default=120.0, gt=0)
    export_timeout_seconds: float = Field(default=60.0, gt=0)
    worker_concurrency: int = Field(default=8, ge=1)

    high_velocity_baseline: int = Field(default=500, ge=1)

    model_config = SettingsConfigDict(env_prefix="NEBULA_", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
