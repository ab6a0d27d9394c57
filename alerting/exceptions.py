"""
Exception hierarchy for the alerting engine.

Lifecycle errors (unknown alert, illegal transition) propagate to the caller.
Rule evaluation and delivery errors are raised internally and always
contained by the component that raised them.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class AlertingError(Exception):
    """Base exception for alerting engine errors."""

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}
        self.timestamp = datetime.now()


class AlertNotFoundError(AlertingError):
    """Operation referenced an unknown alert id."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found", {"alert_id": alert_id})
        self.alert_id = alert_id


class InvalidTransitionError(AlertingError):
    """Lifecycle operation not permitted from the alert's current status."""

    def __init__(self, alert_id: str, current_status: str, operation: str):
        super().__init__(
            f"Cannot {operation} alert {alert_id} in status {current_status}",
            {"alert_id": alert_id, "current_status": current_status, "operation": operation},
        )
        self.alert_id = alert_id
        self.current_status = current_status
        self.operation = operation


class RuleEvaluationError(AlertingError):
    """A rule condition raised while being evaluated."""

    def __init__(self, rule_id: str, cause: Exception):
        super().__init__(
            f"Rule {rule_id} condition failed: {cause}",
            {"rule_id": rule_id, "cause": type(cause).__name__},
        )
        self.rule_id = rule_id
        self.cause = cause


class DeliveryError(AlertingError):
    """A single notification channel failed to deliver."""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        super().__init__(message, {"channel": channel, "status_code": status_code})
        self.channel = channel
        self.status_code = status_code


class ConfigurationError(DeliveryError):
    """A channel is enabled but is missing its destination configuration."""

    def __init__(self, channel: str, missing: str):
        super().__init__(channel, f"{channel} channel enabled but {missing} is not configured")
        self.missing = missing
