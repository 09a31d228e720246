"""Configuration loading for the polymediator query router.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # History store configuration
    history_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description="Execution history backend type",
    )
    history_sqlite_path: str = Field(
        default="./data/history.db",
        description="SQLite database file path",
    )
    history_max_records: int = Field(
        default=1000,
        description="Execution records retained before the oldest are truncated",
    )

    # Performance model
    profile_window_size: int = Field(
        default=100,
        description="Samples retained per (signature, store) profile",
    )
    confidence_threshold: float = Field(
        default=60.0,
        description="Confidence in percent at which history overrides exploration",
    )
    confidence_saturation_samples: int = Field(
        default=50,
        description="Sample count at which confidence reaches 100%",
    )

    # Timeouts and measurement
    probe_timeout_seconds: float = Field(
        default=2.0,
        description="Per-store timeout for data-location probes",
    )
    execute_timeout_seconds: float = Field(
        default=10.0,
        description="Per-store timeout for query execution",
    )
    latency_estimate_ratio: float = Field(
        default=0.3,
        description="Share of execution time reported as estimated latency",
    )
    translate_relational: bool = Field(
        default=True,
        description="Translate relational queries for document stores",
    )

    # Store drivers; an empty URL leaves the driver unregistered
    postgres_url: str = Field(
        default="",
        description="PostgreSQL connection URL",
    )
    postgres_store_name: str = Field(
        default="postgres",
        description="Name the PostgreSQL store is registered under",
    )
    mongo_uri: str = Field(
        default="",
        description="MongoDB connection URI",
    )
    mongo_database: str = Field(
        default="mediator",
        description="MongoDB database name",
    )
    mongo_store_name: str = Field(
        default="mongo",
        description="Name the MongoDB store is registered under",
    )
    kv_rest_url: str = Field(
        default="",
        description="Redis-compatible REST endpoint URL",
    )
    kv_rest_token: str = Field(
        default="",
        description="Bearer token for the key-value REST endpoint",
    )
    kv_store_name: str = Field(
        default="kv",
        description="Name the key-value store is registered under",
    )

    # Per-dialect default stores
    default_relational_store: str = Field(
        default="postgres",
        description="Store used for relational queries when no store reports data",
    )
    default_document_store: str = Field(
        default="mongo",
        description="Store used for document queries when no store reports data",
    )
    default_key_value_store: str = Field(
        default="kv",
        description="Store used for key-value queries when no store reports data",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    @field_validator("history_max_records", "profile_window_size", "confidence_saturation_samples")
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        """Ensure counts are positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def validate_confidence_threshold(cls, v: float) -> float:
        """Ensure threshold is a percentage."""
        if v < 0 or v > 100:
            raise ValueError("confidence_threshold must be between 0 and 100")
        return v

    @field_validator("probe_timeout_seconds", "execute_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Ensure timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("latency_estimate_ratio")
    @classmethod
    def validate_latency_ratio(cls, v: float) -> float:
        """Ensure the latency share is a fraction."""
        if v < 0 or v > 1:
            raise ValueError("latency_estimate_ratio must be between 0 and 1")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
