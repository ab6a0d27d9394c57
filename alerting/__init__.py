"""
Alerting and escalation engine.

This package provides:
- Threshold rules with per-rule cooldowns
- An in-memory alert store with a guarded lifecycle
- Time-based escalation policies
- Concurrent multi-channel notification (email, SMS, Slack, webhook, PagerDuty, dashboard)
- An alert event stream for in-process subscribers
"""

from .clock import Clock, SystemClock
from .cooldown import CooldownTracker
from .escalation import EscalationScheduler, FiredEscalation
from .events import (
    AlertEvent,
    AlertEventBus,
    AlertEventHandler,
    AlertEventType,
    CallbackAlertEventHandler,
    LoggingAlertEventHandler,
)
from .exceptions import (
    AlertingError,
    AlertNotFoundError,
    ConfigurationError,
    DeliveryError,
    InvalidTransitionError,
    RuleEvaluationError,
)
from .manager import AlertManager, create_alert_manager
from .models import (
    Alert,
    AlertChannel,
    AlertDraft,
    AlertSeverity,
    AlertStatus,
    AlertType,
    ThreatSeverity,
)
from .notifications import (
    AlertNotifier,
    DashboardNotifier,
    DeliveryResult,
    DeliveryStatus,
    EmailNotifier,
    NotificationDispatcher,
    PagerDutyNotifier,
    SlackNotifier,
    SmsNotifier,
    WebhookNotifier,
    build_notifiers,
    resolve_channels,
)
from .rules import AlertRule, EscalationLevel, EscalationPolicy, RuleRegistry, default_rules
from .security import AuditLogSecurityEventSink, SecurityEventSink, map_threat_severity
from .store import AlertStore

__all__ = [
    # Manager
    "AlertManager",
    "create_alert_manager",

    # Model
    "Alert",
    "AlertDraft",
    "AlertSeverity",
    "AlertType",
    "AlertStatus",
    "AlertChannel",
    "ThreatSeverity",

    # Rules & escalation
    "AlertRule",
    "EscalationLevel",
    "EscalationPolicy",
    "RuleRegistry",
    "default_rules",
    "CooldownTracker",
    "EscalationScheduler",
    "FiredEscalation",

    # Storage
    "AlertStore",

    # Notifications
    "AlertNotifier",
    "EmailNotifier",
    "SmsNotifier",
    "SlackNotifier",
    "WebhookNotifier",
    "PagerDutyNotifier",
    "DashboardNotifier",
    "NotificationDispatcher",
    "DeliveryResult",
    "DeliveryStatus",
    "build_notifiers",
    "resolve_channels",

    # Events
    "AlertEvent",
    "AlertEventBus",
    "AlertEventHandler",
    "AlertEventType",
    "CallbackAlertEventHandler",
    "LoggingAlertEventHandler",

    # Security
    "SecurityEventSink",
    "AuditLogSecurityEventSink",
    "map_threat_severity",

    # Time
    "Clock",
    "SystemClock",

    # Errors
    "AlertingError",
    "AlertNotFoundError",
    "InvalidTransitionError",
    "RuleEvaluationError",
    "DeliveryError",
    "ConfigurationError",
]
