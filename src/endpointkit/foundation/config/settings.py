"""Environment-based configuration using pydantic-settings.

Example:
    >>> from endpointkit.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.http.port
    8000
    >>> settings.logging.level
    'INFO'

    # Or with environment variables:
    # ENDPOINTKIT_HTTP_PORT=9000
    # ENDPOINTKIT_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, PositiveFloat, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ENDPOINTKIT_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"
    colors: bool | None = Field(default=None, description="Force console colors (None = auto-detect)")

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class HttpSettings(BaseSettings):
    """HTTP listener defaults used by ``serve()``."""

    model_config = SettingsConfigDict(
        env_prefix="ENDPOINTKIT_HTTP_",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=0, le=65535)] = 8000
    log_level: Literal["critical", "error", "warning", "info", "debug", "trace"] = "info"
    access_log: bool = False
    timeout_keep_alive: PositiveFloat = Field(default=5.0, description="Idle keep-alive timeout in seconds")


class EndpointkitSettings(BaseSettings):
    """Root settings.

    Loads configuration from environment variables with the ENDPOINTKIT_
    prefix and from a .env file.

    Example environment variables:
        ENDPOINTKIT_ENVIRONMENT=production
        ENDPOINTKIT_LOG_FORMAT=json
        ENDPOINTKIT_HTTP_HOST=0.0.0.0
    """

    model_config = SettingsConfigDict(
        env_prefix="ENDPOINTKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    debug: bool = Field(default=False, description="Include tracebacks in pipeline diagnostics")
    environment: Literal["development", "staging", "production"] = "development"

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_env(cls, v: str) -> str:
        """Normalize environment name to lowercase."""
        return v.lower() if isinstance(v, str) else v

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> EndpointkitSettings:
    """Get the global settings instance (cached)."""
    return EndpointkitSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    The next get_settings() call reloads configuration from the environment.
    """
    get_settings.cache_clear()
