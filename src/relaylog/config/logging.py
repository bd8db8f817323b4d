"""
Logging Configuration.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def numeric(self) -> int:
        return getattr(logging, self.value)


class LogFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class LogOutput(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    FILE = "file"


# logrus ordinals: panic, fatal, error, warn, info, debug, trace
_ORDINAL_LEVELS = {
    0: LogLevel.CRITICAL,
    1: LogLevel.CRITICAL,
    2: LogLevel.ERROR,
    3: LogLevel.WARNING,
    4: LogLevel.INFO,
    5: LogLevel.DEBUG,
    6: LogLevel.DEBUG,
}

_LEVEL_ALIASES = {
    "WARN": LogLevel.WARNING,
    "FATAL": LogLevel.CRITICAL,
    "PANIC": LogLevel.CRITICAL,
    "TRACE": LogLevel.DEBUG,
}


class MeilisearchSettings(BaseModel):
    """Search index A. Disabled while ``host`` is empty."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="", description="Meilisearch base URL")
    api_key: SecretStr | None = Field(default=None, description="Meilisearch API key")

    @property
    def enabled(self) -> bool:
        return bool(self.host)


class ElasticsearchSettings(BaseModel):
    """Search index B. Disabled while ``addresses`` is empty."""

    model_config = ConfigDict(frozen=True)

    addresses: list[str] = Field(default_factory=list, description="Elasticsearch node URLs")
    username: str | None = Field(default=None, description="Basic auth username")
    password: SecretStr | None = Field(default=None, description="Basic auth password")
    verify_on_init: bool = Field(default=False, description="Ping the cluster during init")

    @property
    def enabled(self) -> bool:
        return len(self.addresses) > 0


class LoggingSettings(BaseSettings):
    """Logging infrastructure configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RL_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    format: LogFormat = Field(default=LogFormat.JSON, description="Output format (json, text)")
    output: LogOutput = Field(default=LogOutput.STDERR, description="Output target (stdout, stderr, file)")
    file_path: str = Field(default="logs/relaylog.log", description="Base path for the file sink")
    index_name: str = Field(default="logs", description="Remote index name")
    meilisearch: MeilisearchSettings = Field(default_factory=MeilisearchSettings)
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)

    rotation_interval_seconds: float = Field(default=24 * 60 * 60, gt=0, description="File rotation period")
    hook_queue_size: int = Field(default=1024, ge=1, description="Pending entries kept for remote hooks")
    hook_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-request timeout for remote hooks")

    console_timestamp_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Text timestamp format",
    )
    console_level_width: int = Field(default=8, description="Text level column width")
    console_logger_width: int = Field(default=24, description="Text logger column width")
    console_separator: str = Field(default=" | ", description="Text column separator")

    @field_validator("level", mode="before")
    @classmethod
    def coerce_level(cls, value: Any) -> Any:
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if isinstance(value, int):
            if value not in _ORDINAL_LEVELS:
                raise ValueError(f"unknown level ordinal: {value}")
            return _ORDINAL_LEVELS[value]
        if isinstance(value, str):
            name = value.strip().upper()
            return _LEVEL_ALIASES.get(name, name)
        return value

    @field_validator("format", mode="before")
    @classmethod
    def coerce_format(cls, value: Any) -> Any:
        if isinstance(value, LogFormat):
            return value
        return LogFormat.JSON if str(value).strip().lower() == "json" else LogFormat.TEXT

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value
