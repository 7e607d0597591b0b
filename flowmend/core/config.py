"""Environment-driven settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """
    Process-wide defaults, read from ``FLOWMEND_*`` environment variables
    or a ``.env`` file. Per-run overrides go through ``ExecutionParams``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWMEND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Comma-separated hostnames; "*" disables the restriction.
    allowed_domains: str = Field(default="", description="Configured domain allow-list")
    max_execution_ms: int = Field(default=120_000, ge=5_000, le=300_000)
    step_retries: int = Field(default=1, ge=0, le=3)
    screenshots_dir: Path = Field(default=Path("data") / "screenshots")
    headless: bool = True
    viewport_width: int = Field(default=1280, gt=0)
    viewport_height: int = Field(default=900, gt=0)
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return normalized

    @property
    def allowed_domain_list(self) -> list[str]:
        return [part.strip() for part in self.allowed_domains.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
