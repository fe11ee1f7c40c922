"""Configuration management using pydantic-settings."""

from .settings import (
    EndpointkitSettings,
    HttpSettings,
    LoggingSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "EndpointkitSettings",
    "HttpSettings",
    "LoggingSettings",
    "clear_settings_cache",
    "get_settings",
]
