"""
Alert rules, escalation policies and the rule registry.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .clock import Clock, SystemClock
from .cooldown import CooldownTracker
from .exceptions import RuleEvaluationError
from .models import AlertChannel, AlertSeverity, AlertType
from utils.logging import get_enhanced_logger, LogCategory

logger = get_enhanced_logger(__name__, LogCategory.ALERTING)


@dataclass
class EscalationLevel:
    """A single level in an escalation policy."""
    after_minutes: float
    severity: AlertSeverity
    channels: List[AlertChannel] = field(default_factory=list)
    notify_users: List[str] = field(default_factory=list)


@dataclass
class EscalationPolicy:
    """Ordered escalation levels for an unresolved alert."""
    levels: List[EscalationLevel] = field(default_factory=list)


@dataclass
class AlertRule:
    """Alert rule definition."""
    rule_id: str
    name: str
    alert_type: AlertType
    condition: Callable[[Any], bool]
    severity: AlertSeverity
    channels: List[AlertChannel] = field(default_factory=list)
    cooldown_minutes: float = 15
    auto_resolve: bool = False
    escalation_policy: Optional[EscalationPolicy] = None
    enabled: bool = True
    description: str = ""

    def evaluate(self, metrics: Any) -> bool:
        """Evaluate the condition, wrapping any failure in RuleEvaluationError."""
        try:
            return bool(self.condition(metrics))
        except Exception as e:
            raise RuleEvaluationError(self.rule_id, e) from e


class RuleRegistry:
    """Holds the alert rules and evaluates them against a metrics snapshot."""

    def __init__(self, cooldowns: Optional[CooldownTracker] = None, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self.cooldowns = cooldowns or CooldownTracker(self._clock)
        self._rules: Dict[str, AlertRule] = {}
        self._lock = threading.Lock()

    def add_rule(self, rule: AlertRule) -> None:
        """Add or replace a rule by id."""
        with self._lock:
            self._rules[rule.rule_id] = rule
        logger.info("Alert rule added", rule=rule.rule_id)

    def remove_rule(self, rule_id: str) -> None:
        """Remove a rule; no-op if absent."""
        with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is not None:
            logger.info("Alert rule removed", rule=rule_id)

    def set_enabled(self, rule_id: str, enabled: bool) -> None:
        """Enable or disable a rule; no-op if absent."""
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return
            rule.enabled = enabled
        logger.info("Alert rule toggled", rule=rule_id, enabled=enabled)

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def get_rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules.values())

    def get_enabled_rules(self) -> List[AlertRule]:
        with self._lock:
            return [rule for rule in self._rules.values() if rule.enabled]

    def evaluate(self, metrics: Any, now: Optional[datetime] = None) -> List[AlertRule]:
        """Return the enabled rules, outside their cooldown, whose condition holds.

        A failing condition is logged and skipped. Cooldowns are not touched
        here; the caller refreshes them when it actually fires a rule.
        """
        now = now or self._clock.now()
        satisfied = []

        for rule in self.get_enabled_rules():
            if self.cooldowns.is_active(rule.rule_id, now):
                continue

            try:
                if rule.evaluate(metrics):
                    satisfied.append(rule)
            except RuleEvaluationError as e:
                logger.error(
                    "Error checking alert rule",
                    rule=rule.rule_id,
                    error=str(e.cause),
                    error_type=type(e.cause).__name__
                )

        return satisfied


def metric_value(metrics: Any, path: str, default: float = 0) -> Any:
    """Read a (dotted) metric from a mapping or attribute-style snapshot."""
    current = metrics
    for part in path.split("."):
        if current is None:
            return default
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return default if current is None else current


def default_rules(
    security_contacts: Optional[List[str]] = None,
    leadership_contacts: Optional[List[str]] = None
) -> List[AlertRule]:
    """Rules installed at startup."""
    security_contacts = security_contacts or ["security-team@itwhip.com"]
    leadership_contacts = leadership_contacts or ["cto@itwhip.com"]

    return [
        AlertRule(
            rule_id="high_error_rate",
            name="High Error Rate",
            alert_type=AlertType.ERROR_RATE,
            condition=lambda m: metric_value(m, "error_rate") > 10,  # percent
            severity=AlertSeverity.HIGH,
            channels=[AlertChannel.SLACK, AlertChannel.EMAIL],
            cooldown_minutes=15,
        ),
        AlertRule(
            rule_id="slow_response",
            name="Slow Response Time",
            alert_type=AlertType.PERFORMANCE,
            condition=lambda m: metric_value(m, "response_time.p95") > 3000,  # ms
            severity=AlertSeverity.MEDIUM,
            channels=[AlertChannel.SLACK],
            cooldown_minutes=30,
        ),
        AlertRule(
            rule_id="security_threat",
            name="Security Threat Detected",
            alert_type=AlertType.SECURITY,
            condition=lambda m: metric_value(m, "threats") > 0,
            severity=AlertSeverity.CRITICAL,
            channels=[AlertChannel.EMAIL, AlertChannel.SMS, AlertChannel.PAGERDUTY],
            cooldown_minutes=5,
            escalation_policy=EscalationPolicy(levels=[
                EscalationLevel(
                    after_minutes=5,
                    severity=AlertSeverity.CRITICAL,
                    channels=[AlertChannel.SMS, AlertChannel.PAGERDUTY],
                    notify_users=list(security_contacts),
                ),
                EscalationLevel(
                    after_minutes=15,
                    severity=AlertSeverity.CRITICAL,
                    channels=[AlertChannel.SMS],
                    notify_users=list(leadership_contacts),
                ),
            ]),
        ),
        AlertRule(
            rule_id="low_disk_space",
            name="Low Disk Space",
            alert_type=AlertType.CAPACITY,
            condition=lambda m: metric_value(m, "disk_usage") > 90,  # percent
            severity=AlertSeverity.MEDIUM,
            channels=[AlertChannel.EMAIL],
            cooldown_minutes=60,
        ),
        AlertRule(
            rule_id="revenue_anomaly",
            name="Revenue Anomaly",
            alert_type=AlertType.BUSINESS,
            condition=lambda m: metric_value(m, "revenue_drop_percent") > 30,
            severity=AlertSeverity.HIGH,
            channels=[AlertChannel.EMAIL, AlertChannel.SLACK],
            cooldown_minutes=120,
        ),
        AlertRule(
            rule_id="fraud_detected",
            name="Potential Fraud Detected",
            alert_type=AlertType.FRAUD,
            condition=lambda m: metric_value(m, "fraud_score") > 80,
            severity=AlertSeverity.HIGH,
            channels=[AlertChannel.EMAIL, AlertChannel.SLACK],
            cooldown_minutes=30,
        ),
    ]
