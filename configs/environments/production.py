"""
Production environment configuration.
"""

from typing import List

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class ProductionConfig(BaseConfig):
    """Production configuration."""

    model_config = SettingsConfigDict(
        env_file=".env.production",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: str = "/var/log/itwhip/alerting"

    notification_max_workers: int = 16

    def validate_production_requirements(self) -> List[str]:
        """Additional validation for production."""
        issues = self.validate_channel_destinations()

        enabled = [
            self.alert_email_enabled,
            self.alert_sms_enabled,
            self.alert_slack_enabled,
            self.alert_webhook_enabled,
            self.pagerduty_enabled,
        ]
        if not any(enabled):
            issues.append("At least one external notification channel should be enabled")

        if not self.pagerduty_enabled:
            issues.append("PAGERDUTY_ENABLED recommended for critical alerts")

        return issues
