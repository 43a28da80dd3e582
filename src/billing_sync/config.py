"""Application configuration and feature flags."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central application configuration with sane defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BILLING_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(
        "sqlite:///./billing.db",
        description="SQLAlchemy-compatible connection string.",
    )
    timezone: str = Field(
        "Europe/Berlin",
        description="Calendar used to decide which schedules are due today.",
    )
    invoice_number_prefix: str = Field("RE", description="Prefix of invoice numbers.")
    invoice_due_days: int = Field(
        30,
        ge=0,
        description="Payment term applied to generated invoices.",
    )
    cron_secret: Optional[SecretStr] = Field(
        None,
        description="Shared secret expected as bearer token on the cron endpoints.",
    )
    lexoffice_enabled: bool = Field(
        False,
        description="Fallback enabled flag when no lexoffice system setting is stored.",
    )
    lexoffice_api_key: Optional[SecretStr] = Field(
        None,
        description="Fallback API key when no lexoffice system setting is stored.",
    )
    lexoffice_base_url: str = Field(
        "https://api.lexware.io",
        description="Base URL of the Lexoffice public API.",
    )
    lexoffice_timeout: float = Field(30.0, description="HTTP timeout in seconds.")
    lexoffice_min_interval: float = Field(
        0.5,
        ge=0,
        description="Minimum spacing between two Lexoffice requests in seconds.",
    )
    app_base_url: str = Field(
        "http://localhost:3000",
        description="Public dashboard URL used in notification links.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO")
    log_format: Literal["json", "console"] = Field("console")

    @field_validator("lexoffice_base_url", "app_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("invoice_number_prefix")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Number prefix must not be empty")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return memoized settings instance."""

    return Settings()
