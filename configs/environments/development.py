"""
Development environment configuration.
"""

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class DevelopmentConfig(BaseConfig):
    """Development configuration."""

    model_config = SettingsConfigDict(
        env_file=".env.development",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = True
    log_level: str = "DEBUG"
    log_format: str = "text"

    # Short timeouts so a stalled sandbox endpoint surfaces quickly
    slack_timeout: float = 5.0
    webhook_timeout: float = 5.0
