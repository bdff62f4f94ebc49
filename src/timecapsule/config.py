"""Configuration management for the time capsule service."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .capsule.factory import FieldLimits


class Settings(BaseSettings):
    """Application settings loaded from environment and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TIMECAPSULE_",
        extra="ignore",
    )

    # Storage
    db_path: Path = Path("data/timecapsule.db")

    # Server
    host: str = "127.0.0.1"
    port: int = 8430

    # Capsule field limits
    max_title_length: int = 64
    max_hint_length: int = 128
    max_message_bytes: int = 5000

    # "repeatable": a correct password keeps working after the first claim.
    # "single_use": the second successful retrieval fails with AlreadyClaimed.
    claim_policy: Literal["repeatable", "single_use"] = "repeatable"

    # API keys
    default_rate_limit: int = 60  # per hour

    @property
    def field_limits(self) -> FieldLimits:
        return FieldLimits(
            max_title_length=self.max_title_length,
            max_hint_length=self.max_hint_length,
            max_message_bytes=self.max_message_bytes,
        )

    @property
    def single_use(self) -> bool:
        return self.claim_policy == "single_use"


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
