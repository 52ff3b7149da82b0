"""
Configuration management for the assessment pipeline.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Protocol

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheBackend(str, Enum):
    """Storage used by the assessment cache."""

    MEMORY = "memory"  # Process-local TTL cache
    DISK = "disk"  # Persistent cache shared across runs


class ConfigProvider(Protocol):
    """The subset of configuration the request pipeline reads."""

    def get_backend_url(self) -> str: ...

    def get_api_key(self) -> str: ...

    def get_batch_size(self) -> int: ...


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Missing required fields
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Assessor Backend Configuration
    # ==========================================================================
    assessor_backend_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the LLM-backed assessor service",
    )

    assessor_api_key: str = Field(
        ...,
        description="Bearer token for the assessor service",
        min_length=1,
    )

    assessor_batch_size: int = Field(
        default=200,
        ge=1,
        le=500,
        description="Number of requests dispatched together in one batch",
    )

    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout for calls to the assessor",
    )

    # ==========================================================================
    # Retry Configuration
    # ==========================================================================
    max_request_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries for a single request after its first attempt",
    )

    initial_backoff_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Delay before the first retry; the backend rate limits early",
    )

    backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Factor applied to the delay after each failed attempt",
    )

    validation_retry_limit: int = Field(
        default=1,
        ge=0,
        le=5,
        description="Re-requests allowed per uid when a response fails validation",
    )

    validation_request_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Transport retries for each validation re-request",
    )

    max_backend_build_errors: int = Field(
        default=2,
        ge=0,
        description="Backend component build failures tolerated before aborting",
    )

    # ==========================================================================
    # Cache Configuration
    # ==========================================================================
    cache_backend: CacheBackend = Field(
        default=CacheBackend.MEMORY,
        description="Storage used for cached assessments",
    )

    cache_directory: Path = Field(
        default=Path("./.assessment_cache"),
        description="Directory for the disk cache",
    )

    cache_ttl_seconds: int = Field(
        default=6 * 60 * 60,
        gt=0,
        description="Lifetime of a cached assessment",
    )

    cache_key_version: str = Field(
        default="",
        description="Optional prefix mixed into cache keys; change it to bust all entries",
    )

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    @field_validator("assessor_backend_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def get_backend_url(self) -> str:
        return self.assessor_backend_url

    def get_api_key(self) -> str:
        return self.assessor_api_key

    def get_batch_size(self) -> int:
        return self.assessor_batch_size


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
