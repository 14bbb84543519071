"""Centralized configuration for roleguard.

Uses Pydantic BaseSettings with environment variable loading and validation.
All RG_* environment variables are validated at import time.
"""

from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {"env_prefix": "RG_", "case_sensitive": False, "extra": "ignore"}

    # Super-admin heuristic
    app_domain: str | None = Field(
        default=None, description="E-mail domain whose users may be super app admins"
    )
    super_app_admin_emails: str = Field(
        default="", description="Comma-separated local parts allowed as super app admins"
    )

    # Storage
    db_path: str = Field(default="roleguard.db", description="SQLite database path")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    # Delegated grant consumption
    persist_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for one usage-counter write"
    )
    persist_retries: int = Field(
        default=2, ge=0, le=10, description="Extra attempts after a failed usage-counter write"
    )

    @field_validator("app_domain")
    @classmethod
    def validate_app_domain(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower().lstrip("@")
        if not v or "@" in v:
            msg = f"RG_APP_DOMAIN must be a bare domain name, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"RG_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in logging.getLevelNamesMapping():
            msg = f"RG_LOG_LEVEL must be a Python log level name, got '{v}'"
            raise ValueError(msg)
        return v

    @property
    def super_app_admin_list(self) -> list[str]:
        """Return parsed, lower-cased list of super admin local parts."""
        return [e.strip().lower() for e in self.super_app_admin_emails.split(",") if e.strip()]


# Singleton, validated at import time.
settings = Settings()
