"""
Testing environment configuration.
"""

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class TestingConfig(BaseConfig):
    """Testing configuration."""

    model_config = SettingsConfigDict(
        env_file=".env.testing",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = True
    log_level: str = "DEBUG"
    log_format: str = "text"

    # External channels stay off unless a test opts in
    alert_email_enabled: bool = False
    alert_sms_enabled: bool = False
    alert_slack_enabled: bool = False
    alert_webhook_enabled: bool = False
    pagerduty_enabled: bool = False

    # Fast timeouts for tests
    email_timeout: float = 1.0
    sms_timeout: float = 1.0
    slack_timeout: float = 1.0
    webhook_timeout: float = 1.0
    pagerduty_timeout: float = 1.0
    notification_max_workers: int = 4
