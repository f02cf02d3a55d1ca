# backend/tutoring_core/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./tutoring_core.db",
        description="SQLAlchemy URL of the relational store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements to the log")
    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        description="How long a SQLite writer waits for the database lock",
    )

    # Logging / metrics
    log_level: str = Field(default="INFO", description="Root log level")
    metrics_prefix: str = Field(default="tutoring_core", description="Prometheus metric prefix")

    # Waitlist
    waitlist_offer_hours: int = Field(
        default=24,
        description="Hours a notified waitlist member has to claim a freed seat",
    )

    # Cancellation policy
    refund_credits_on_cancel: bool = Field(
        default=True,
        description="Void the ledger entry of a package-paid booking when it is cancelled in time",
    )
    cancellation_deadline_hours: int = Field(
        default=24,
        description="Minimum hours before session start for a refund-eligible cancellation",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("waitlist_offer_hours")
    @classmethod
    def _positive_offer_window(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("WAITLIST_OFFER_HOURS must be positive")
        return value

    @field_validator("cancellation_deadline_hours")
    @classmethod
    def _non_negative_deadline(cls, value: int) -> int:
        if value < 0:
            raise ValueError("CANCELLATION_DEADLINE_HOURS cannot be negative")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_testing(self) -> bool:
        return self.environment == "test" or is_running_tests()


settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
