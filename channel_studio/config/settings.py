"""
Channel Studio - Configuration Settings
Remote engine connection, local flow storage, channel defaults, and platform settings.
"""

import logging
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Channel Studio settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field(default="dev", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # ── Remote Engine ─────────────────────────────────────────────────
    engine_url: str = Field(default="http://localhost:3001/api", alias="ENGINE_URL")
    engine_api_key: Optional[str] = Field(default=None, alias="ENGINE_API_KEY")
    engine_timeout_seconds: float = Field(default=5.0, alias="ENGINE_TIMEOUT_SECONDS")

    # ── Local Flow Storage ────────────────────────────────────────────
    flow_storage_path: str = Field(default="mirth-flow.json", alias="FLOW_STORAGE_PATH")

    # ── Channel Defaults ──────────────────────────────────────────────
    default_channel_name: str = "My Channel"
    default_max_retries: int = 3

    # ── Live Status Stream ────────────────────────────────────────────
    metrics_history_size: int = 50

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["dev", "development", "qa", "uat", "prod"]
        if v.lower() not in allowed:
            logger.warning(f"[SETTINGS] environment '{v}' not in {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()


settings = Settings()
