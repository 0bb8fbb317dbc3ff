# File: src/rolemailer/config.py
"""
Process-wide settings, loaded from the environment (and `.env` when present).
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment / DB
    ENV: str = Field(default="dev")
    DATABASE_URL: str = Field(default="sqlite:///./rolemailer.db")

    # Rule configuration documents (YAML)
    TRANSITIONS_PATH: str = Field(default="config/transitions.yaml")
    EVENTS_PATH: str = Field(default="config/events.yaml")
    # Comma separated; empty means any role name is accepted.
    KNOWN_ROLES: str = ""
    # Fail the whole pass when any rule or event definition is malformed.
    STRICT_CONFIG: bool = False

    # Rendering
    TEMPLATE_DIRECTORY: str = Field(default="templates")
    SITE_URL: str = Field(default="http://localhost:8000")

    # Tokens handed to follow-up links
    NONCE_LENGTH: int = Field(default=32, ge=8, le=128)

    # Dispatch loop
    DISPATCH_INTERVAL_SECONDS: int = Field(default=600, ge=1)
    DISPATCH_LEASE_SECONDS: int = Field(default=1800, ge=1)
    DISPATCH_WORKERS: int = Field(default=1, ge=1)
    RUN_TICKER: bool = True
    MARK_PROCESSED_ON_TRANSPORT_FAILURE: bool = True

    # Outbound mail
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = False
    SMTP_TIMEOUT_SECONDS: float = 10.0
    SMTP_RETRIES: int = Field(default=2, ge=0)

    # API / Security
    API_KEY: str | None = None

    # Observability
    METRICS_ENABLED: bool = True

    def known_roles(self) -> List[str]:
        return [r.strip() for r in self.KNOWN_ROLES.split(",") if r.strip()]


settings = Settings()
