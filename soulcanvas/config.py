"""Application configuration with Pydantic Settings.

This module provides centralized configuration management using pydantic-settings.
Settings are loaded from environment variables and .env files.

Missing credentials never fail at load time: a node without an API key is
simply treated as disabled by the node registry.

Examples:
    >>> from soulcanvas.config import get_settings
    >>> settings = get_settings()
    >>> settings.NODE_SELECTION_STRATEGY
    'priority'

    >>> settings.get_api_key("openrouter")
    'sk-or-v1-...'

Tests:
    - tests/unit/test_config.py::TestSettings
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KIE_NODE_ID = "kie"
OPENROUTER_NODE_ID = "openrouter"

SELECTION_STRATEGIES = ("priority", "latency", "round-robin")


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings with per-node backend configuration.

    Attributes:
        KIE_API_KEY: kie.ai API key (async job backend)
        OPENROUTER_API_KEY: OpenRouter API key (chat completions backend)
        NODE_SELECTION_STRATEGY: Advisory node selection strategy
        REQUEST_TIMEOUT: Per-request timeout for generation calls (seconds)
        HEALTH_CACHE_TTL: How long a probe result stays fresh (seconds)
        S3_BUCKET: Bucket used to publish sketches for the async backend
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # kie.ai (async job queue)
    KIE_API_KEY: str | None = Field(default=None, description="kie.ai API key")
    KIE_BASE_URL: str = Field(
        default="https://api.kie.ai/api/v1",
        description="kie.ai API base URL",
    )
    KIE_IMAGE_MODEL: str = Field(
        default="google/nano-banana-edit",
        description="Model used for kie.ai image tasks",
    )
    KIE_ENABLED: bool = Field(default=True, description="Enable the kie.ai node")

    # OpenRouter (single-shot chat completions)
    OPENROUTER_API_KEY: str | None = Field(
        default=None,
        description="OpenRouter API key",
    )
    OPENROUTER_BASE_URL: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL",
    )
    OPENROUTER_IMAGE_MODEL: str = Field(
        default="google/gemini-2.5-flash-image",
        description="Image-capable chat model on OpenRouter",
    )
    OPENROUTER_ENABLED: bool = Field(
        default=True,
        description="Enable the OpenRouter node",
    )

    # Node selection and health
    NODE_SELECTION_STRATEGY: str = Field(
        default="priority",
        description="Advisory selection strategy (priority, latency, round-robin)",
    )
    HEALTH_CHECK_TIMEOUT: float = Field(default=5.0, gt=0)
    HEALTH_CACHE_TTL: float = Field(default=300.0, gt=0)
    FAILOVER_THRESHOLD: int = Field(default=3, ge=1)

    # Requests and retries
    REQUEST_TIMEOUT: float = Field(default=120.0, gt=0)
    RETRY_MAX_RETRIES: int = Field(default=2, ge=0, le=10)
    RETRY_BASE_DELAY: float = Field(default=1.0, ge=0)
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, ge=1)
    RETRY_MAX_DELAY: float = Field(default=30.0, ge=0)

    # Async job polling
    POLL_INITIAL_DELAY: float = Field(default=2.0, ge=0)
    POLL_INTERVAL: float = Field(default=3.0, ge=0)
    POLL_TIMEOUT: float = Field(default=60.0, gt=0)

    # Sketch upload (S3-compatible storage)
    S3_REGION: str | None = Field(default=None)
    S3_BUCKET: str | None = Field(default=None)
    S3_ACCESS_KEY_ID: str | None = Field(default=None)
    S3_SECRET_ACCESS_KEY: str | None = Field(default=None)
    S3_ENDPOINT: str | None = Field(
        default=None,
        description="Endpoint for S3-compatible services (R2, Bitiful, MinIO)",
    )
    S3_PUBLIC_URL: str | None = Field(
        default=None,
        description="Public URL prefix for uploaded objects",
    )

    # Application Settings
    ENVIRONMENT: Environment = Field(default=Environment.DEVELOPMENT)
    LOG_LEVEL: str = Field(default="INFO")

    @field_validator("NODE_SELECTION_STRATEGY", mode="before")
    @classmethod
    def normalize_strategy(cls, v: str | None) -> str:
        """Fall back to priority selection for unknown strategies."""
        if isinstance(v, str) and v.strip().lower() in SELECTION_STRATEGIES:
            return v.strip().lower()
        return "priority"

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == Environment.PRODUCTION

    @property
    def s3_configured(self) -> bool:
        """Check if sketch upload storage is fully configured."""
        return all(
            (
                self.S3_REGION,
                self.S3_BUCKET,
                self.S3_ACCESS_KEY_ID,
                self.S3_SECRET_ACCESS_KEY,
            )
        )

    def get_api_key(self, node_id: str) -> str | None:
        """Get the API key for a node.

        Args:
            node_id: The node identifier ("kie" or "openrouter").

        Returns:
            The API key, or None when the node has no credentials.
        """
        if node_id == KIE_NODE_ID:
            return self.KIE_API_KEY or None
        elif node_id == OPENROUTER_NODE_ID:
            return self.OPENROUTER_API_KEY or None
        return None

    def has_credentials(self, node_id: str) -> bool:
        """Check if a node has credentials configured."""
        return self.get_api_key(node_id) is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The application settings.
    """
    return Settings()
