"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development (simulated
e-mail delivery, simulated ledger anchor).

Usage:
    from backend.app.core.config import settings
    print(settings.NOTIFY_TIMEOUT_SECONDS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Guardian SOS"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Notification gateway (e-mail) ──
    NOTIFY_PROVIDER: str = "simulation"  # simulation | http
    NOTIFY_ENDPOINT_URL: Optional[str] = None
    NOTIFY_API_KEY: Optional[str] = None
    NOTIFY_FROM_ADDRESS: str = "sos@guardian.local"
    NOTIFY_TIMEOUT_SECONDS: float = Field(10.0, gt=0)  # per-recipient dispatch bound

    # ── Verification anchor (ledger) ──
    VERIFICATION_PROVIDER: str = "simulation"  # simulation | http | disabled
    VERIFICATION_ENDPOINT_URL: Optional[str] = None
    VERIFICATION_API_KEY: Optional[str] = None
    VERIFICATION_TIMEOUT_SECONDS: float = Field(5.0, gt=0)

    # ── Location ──
    LOCATION_LOOKUP_URL: Optional[str] = None  # server-side fallback lookup
    LOCATION_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    # ── SOS behaviour ──
    SOS_COUNTDOWN_SECONDS: int = Field(3, ge=0, le=30)
    COUNTDOWN_RETENTION_SECONDS: float = 600.0  # finished countdowns stay pollable this long
    COUNTDOWN_SWEEP_INTERVAL_SECONDS: float = Field(60.0, gt=0)
    MAP_LINK_TEMPLATE: str = "https://www.google.com/maps?q={latitude},{longitude}"

    # ── Sessions ──
    SESSION_AUTO_PROVISION: bool = True  # unknown e-mail on login creates a profile

    @field_validator("NOTIFY_PROVIDER")
    @classmethod
    def known_notify_provider(cls, value: str) -> str:
        if value not in ("simulation", "http"):
            raise ValueError(f"NOTIFY_PROVIDER must be simulation or http, got {value!r}")
        return value

    @field_validator("VERIFICATION_PROVIDER")
    @classmethod
    def known_verification_provider(cls, value: str) -> str:
        if value not in ("simulation", "http", "disabled"):
            raise ValueError(
                f"VERIFICATION_PROVIDER must be simulation, http or disabled, got {value!r}"
            )
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
