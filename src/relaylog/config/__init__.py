"""
relaylog Configuration Module.

Implements the Nested Settings Pattern: each concern is an independent
pydantic-settings class with its own environment variable prefix.

Multi-Environment Support:
    Set `RL_ENV` to one of: development, testing, staging, production
    The system will load .env files in this order (later overrides earlier):
    1. .env
    2. .env.local
    3. .env.{environment}
    4. .env.{environment}.local

Usage:
    from relaylog.config import settings

    settings.logging.level
    settings.logging.elasticsearch.addresses
    settings.app.version
"""

from functools import cached_property
import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from .app import AppSettings
from .logging import (
    ElasticsearchSettings,
    LogFormat,
    LoggingSettings,
    LogLevel,
    LogOutput,
    MeilisearchSettings,
)


def _get_env_files() -> tuple[str, ...]:
    """Determine which .env files to load based on RL_ENV."""
    env = os.getenv("RL_ENV", "development")
    return (
        ".env",
        ".env.local",
        f".env.{env}",
        f".env.{env}.local",
    )


class Settings(BaseSettings):
    """Composite settings aggregating the application and logging domains."""

    model_config = SettingsConfigDict(
        env_file=_get_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @cached_property
    def app(self) -> AppSettings:
        return AppSettings()

    @cached_property
    def logging(self) -> LoggingSettings:
        return LoggingSettings(_env_file=_get_env_files())


settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "AppSettings",
    "LoggingSettings",
    "LogLevel",
    "LogFormat",
    "LogOutput",
    "MeilisearchSettings",
    "ElasticsearchSettings",
]
