"""
Base configuration settings.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Dict, Any


def _split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated env value into a clean list."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class BaseConfig(BaseSettings):
    """Base configuration for all environments."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "ItWhip Alerting Engine"
    app_version: str = "1.0.0"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: str = "logs"

    # Email channel
    alert_email_enabled: bool = False
    alert_email_recipients: str = ""
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_secure: bool = False
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = "alerts@itwhip.com"

    # SMS channel
    alert_sms_enabled: bool = False
    alert_sms_recipients: str = ""
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # Slack channel
    alert_slack_enabled: bool = False
    slack_webhook_url: str = ""
    slack_channel: Optional[str] = None
    slack_username: str = "ItWhip Alerts"

    # Generic webhook channel
    alert_webhook_enabled: bool = False
    alert_webhook_url: str = ""

    # PagerDuty channel
    pagerduty_enabled: bool = False
    pagerduty_integration_key: str = ""

    # Per-channel timeouts (seconds)
    email_timeout: float = Field(default=15.0, gt=0)
    sms_timeout: float = Field(default=10.0, gt=0)
    slack_timeout: float = Field(default=10.0, gt=0)
    webhook_timeout: float = Field(default=10.0, gt=0)
    pagerduty_timeout: float = Field(default=10.0, gt=0)
    notification_max_workers: int = Field(default=8, ge=1)

    # Escalation contacts
    security_team_contacts: str = "security-team@itwhip.com"
    leadership_contacts: str = "cto@itwhip.com"

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("log_format must be json or text")
        return value

    def get_email_recipients(self) -> List[str]:
        """Email recipients as a list."""
        return _split_csv(self.alert_email_recipients)

    def get_sms_recipients(self) -> List[str]:
        """SMS recipients as a list."""
        return _split_csv(self.alert_sms_recipients)

    def get_security_team_contacts(self) -> List[str]:
        return _split_csv(self.security_team_contacts)

    def get_leadership_contacts(self) -> List[str]:
        return _split_csv(self.leadership_contacts)

    def get_notification_config(self) -> Dict[str, Dict[str, Any]]:
        """Get per-channel notification configuration."""
        return {
            "email": {
                "enabled": self.alert_email_enabled,
                "recipients": self.get_email_recipients(),
                "smtp": {
                    "host": self.smtp_host,
                    "port": self.smtp_port,
                    "secure": self.smtp_secure,
                    "user": self.smtp_user,
                    "password": self.smtp_pass,
                    "from": self.smtp_from,
                } if self.smtp_host else None,
                "timeout": self.email_timeout,
            },
            "sms": {
                "enabled": self.alert_sms_enabled,
                "recipients": self.get_sms_recipients(),
                "twilio": {
                    "account_sid": self.twilio_account_sid,
                    "auth_token": self.twilio_auth_token,
                    "from_number": self.twilio_from_number,
                } if self.twilio_account_sid else None,
                "timeout": self.sms_timeout,
            },
            "slack": {
                "enabled": self.alert_slack_enabled,
                "webhook_url": self.slack_webhook_url,
                "channel": self.slack_channel,
                "username": self.slack_username,
                "timeout": self.slack_timeout,
            },
            "webhook": {
                "enabled": self.alert_webhook_enabled,
                "url": self.alert_webhook_url,
                "timeout": self.webhook_timeout,
            },
            "pagerduty": {
                "enabled": self.pagerduty_enabled,
                "integration_key": self.pagerduty_integration_key,
                "timeout": self.pagerduty_timeout,
            },
        }

    def validate_channel_destinations(self) -> List[str]:
        """List channels that are enabled but missing a destination."""
        issues = []

        if self.alert_email_enabled:
            if not self.smtp_host:
                issues.append("ALERT_EMAIL_ENABLED requires SMTP_HOST")
            if not self.get_email_recipients():
                issues.append("ALERT_EMAIL_ENABLED requires ALERT_EMAIL_RECIPIENTS")

        if self.alert_sms_enabled:
            if not self.twilio_account_sid:
                issues.append("ALERT_SMS_ENABLED requires TWILIO_ACCOUNT_SID")
            if not self.get_sms_recipients():
                issues.append("ALERT_SMS_ENABLED requires ALERT_SMS_RECIPIENTS")

        if self.alert_slack_enabled and not self.slack_webhook_url:
            issues.append("ALERT_SLACK_ENABLED requires SLACK_WEBHOOK_URL")

        if self.alert_webhook_enabled and not self.alert_webhook_url:
            issues.append("ALERT_WEBHOOK_ENABLED requires ALERT_WEBHOOK_URL")

        if self.pagerduty_enabled and not self.pagerduty_integration_key:
            issues.append("PAGERDUTY_ENABLED requires PAGERDUTY_INTEGRATION_KEY")

        return issues
