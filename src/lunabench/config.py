"""Runtime configuration.

Values come from ``LUNABENCH_*`` environment variables (or a ``.env`` file)
and can be overridden per CLI invocation.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for ingestion and analysis."""

    model_config = SettingsConfigDict(env_prefix="LUNABENCH_", env_file=".env", extra="ignore")

    data_dir: Path = Field(default=Path("data"), description="Root directory of the JSON store")
    match_tolerance_ms: int = Field(
        default=1000, ge=0, description="Max timestamp distance for a matched pair"
    )
    # Reference devices that record wall-clock time in a local zone (e.g. IST
    # = 330) need this added to their timestamps to line up with session
    # boundaries, which are always UTC.
    reference_clock_offset_minutes: int = Field(
        default=0, description="Offset added to Masimo/Polar timestamps, in minutes"
    )
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Path | None = Field(default=None, description="Optional JSON-lines log file")

    @property
    def clock_offset(self) -> timedelta:
        return timedelta(minutes=self.reference_clock_offset_minutes)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
