"""
Application Configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Basic application metadata stamped on every log entry."""

    model_config = SettingsConfigDict(
        env_prefix="RL_APP_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = "relaylog"
    version: str = ""
