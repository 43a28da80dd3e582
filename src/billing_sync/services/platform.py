"""Runtime configuration handed to the scheduled jobs."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from sqlmodel import Session

from ..config import Settings
from ..interfaces.lexoffice import LexofficeClient
from ..models import SystemSetting

LEXOFFICE_SETTING_KEY = "lexoffice"


@dataclass(frozen=True)
class PlatformConfig:
    """Connection parameters for the accounting platform."""

    enabled: bool = False
    api_key: Optional[str] = field(default=None, repr=False)
    base_url: str = "https://api.lexware.io"
    timeout: float = 30.0
    min_interval: float = 0.5

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass(frozen=True)
class JobConfig:
    """Everything the generator and the reconciliation job read, passed explicitly."""

    platform: PlatformConfig = field(default_factory=PlatformConfig)
    timezone: str = "Europe/Berlin"
    invoice_number_prefix: str = "RE"
    invoice_due_days: int = 30
    app_base_url: str = "http://localhost:3000"


def load_platform_config(session: Session, settings: Settings) -> PlatformConfig:
    """Prefer the admin-maintained system setting, fall back to the environment."""

    enabled = settings.lexoffice_enabled
    api_key = settings.lexoffice_api_key.get_secret_value() if settings.lexoffice_api_key else None
    stored = session.get(SystemSetting, LEXOFFICE_SETTING_KEY)
    if stored is not None:
        value = json.loads(stored.value or "{}")
        enabled = bool(value.get("is_enabled", False))
        api_key = value.get("api_key") or None
    return PlatformConfig(
        enabled=enabled,
        api_key=api_key,
        base_url=settings.lexoffice_base_url,
        timeout=settings.lexoffice_timeout,
        min_interval=settings.lexoffice_min_interval,
    )


def load_job_config(session: Session, settings: Settings) -> JobConfig:
    return JobConfig(
        platform=load_platform_config(session, settings),
        timezone=settings.timezone,
        invoice_number_prefix=settings.invoice_number_prefix,
        invoice_due_days=settings.invoice_due_days,
        app_base_url=settings.app_base_url,
    )


def build_client(config: PlatformConfig) -> Optional[LexofficeClient]:
    if not config.active:
        return None
    return LexofficeClient(
        config.api_key or "",
        base_url=config.base_url,
        timeout=config.timeout,
        min_interval=config.min_interval,
    )
