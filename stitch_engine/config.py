"""
Configuration settings for the stitch scheduling engine.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is prefixed with STITCH_ (e.g. STITCH_EXPECTED_RESPONSE_MS=2500).
"""
from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STITCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Skip Number Calculation
    # ========================================
    expected_response_ms: float = Field(
        default=3000.0,
        gt=0,
        description="Response time (ms) treated as neutral speed",
    )
    min_response_factor: float = Field(
        default=0.5,
        gt=0,
        description="Lower clamp for the response-time factor",
    )
    max_response_factor: float = Field(
        default=1.5,
        gt=0,
        description="Upper clamp for the response-time factor",
    )
    minimum_displacement: int = Field(
        default=2,
        ge=1,
        description="Smallest insertion depth used when a queue holds 2+ stitches",
    )

    # ========================================
    # Readiness Cache
    # ========================================
    cache_base_ttl_hours: float = Field(
        default=24.0,
        gt=0,
        description="Base lifetime of a cached ReadyStitch",
    )
    cache_level_factor: float = Field(
        default=0.2,
        ge=0,
        description="Extra TTL fraction per boundary level (level 3 -> +60%)",
    )
    base_preparation_ms: int = Field(
        default=2000,
        ge=0,
        description="Estimated time to assemble a stitch from scratch",
    )

    # ========================================
    # Content
    # ========================================
    questions_per_stitch: int = Field(
        default=20,
        ge=1,
        description="Questions assembled into one ReadyStitch",
    )
    default_difficulty: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Initial difficulty for newly initialised tubes",
    )
    surprise_rate: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Share of surprise stitches mixed in when seeding a tube",
    )

    # ========================================
    # Storage & Logging
    # ========================================
    database_url: str = Field(
        default="sqlite:///stitch_engine.db",
        description="SQLAlchemy URL for the durable queue store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum loguru level for the CLI sink",
    )

    def skip_config(self):
        """Build the SkipConfig consumed by SkipNumberCalculator."""
        from stitch_engine.skip_number import SkipConfig

        return SkipConfig(
            expected_response_ms=self.expected_response_ms,
            min_response_factor=self.min_response_factor,
            max_response_factor=self.max_response_factor,
        )

    def cache_ttl(self):
        """Build the CacheTTL consumed by ReadinessCache."""
        from stitch_engine.cache import CacheTTL

        return CacheTTL(
            base=timedelta(hours=self.cache_base_ttl_hours),
            level_factor=self.cache_level_factor,
            base_preparation=timedelta(milliseconds=self.base_preparation_ms),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
