from __future__ import annotations

from datetime import timedelta
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relayguard.constants import DB_SCHEMA

# Load .env once at module import; all BaseSettings subclasses will see the env vars
load_dotenv()


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "relayguard"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')."
            raise ValueError(msg)
        return v


class DedupSettings(BaseSettings):
    """Message dedup settings. Env vars prefixed with DEDUP_.

    TTL must exceed realistic restart-to-replay latency; 72h covers a weekend outage.
    """

    model_config = SettingsConfigDict(env_prefix="DEDUP_")

    ttl_hours: float = 72.0
    fast_tier_capacity: int = 10_000
    rehydrate_window_hours: float = 72.0
    rehydrate_row_cap: int = 20_000
    rehydrate_batch_size: int = 1_000
    prune_interval_seconds: float = 3600.0
    prune_batch_size: int = 5_000
    maintenance_timeout_seconds: float = 30.0
    excerpt_chars: int = 80  # leading content kept in audit records for dropped messages

    @model_validator(mode="after")
    def _validate(self) -> Self:
        positive = {
            "ttl_hours": self.ttl_hours,
            "fast_tier_capacity": self.fast_tier_capacity,
            "rehydrate_window_hours": self.rehydrate_window_hours,
            "rehydrate_row_cap": self.rehydrate_row_cap,
            "rehydrate_batch_size": self.rehydrate_batch_size,
            "prune_interval_seconds": self.prune_interval_seconds,
            "prune_batch_size": self.prune_batch_size,
            "maintenance_timeout_seconds": self.maintenance_timeout_seconds,
            "excerpt_chars": self.excerpt_chars,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"DEDUP_{name.upper()} must be > 0, got {value}")
        return self

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.ttl_hours)

    @property
    def rehydrate_window(self) -> timedelta:
        return timedelta(hours=self.rehydrate_window_hours)


class LogSettings(BaseSettings):
    """Logging settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    json_output: bool = True
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            msg = f"LOG_LEVEL must be one of {sorted(allowed)} (got '{v}')"
            raise ValueError(msg)
        return v.upper()


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    log: LogSettings = Field(default_factory=LogSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
