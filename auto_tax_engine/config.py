"""
Engine and CLI settings using Pydantic Settings.

Values come from AUTOTAX_* environment variables or a .env file.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for logging, default jurisdiction and report output."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOTAX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Minimum log level"
    )
    log_json: bool = Field(default=False, description="Emit JSON log lines")
    default_state: str = Field(
        default="IN", description="State used when a deal names none"
    )
    output_dir: str = Field(default="reports", description="Report output directory")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @field_validator("default_state")
    @classmethod
    def validate_default_state(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 2 or not code.isalpha():
            raise ValueError("default_state must be a two-letter state code")
        return code


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance; call get_settings.cache_clear() to reload."""
    return Settings()
