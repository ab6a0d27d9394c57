"""
Alert entity, enumerations and lifecycle transitions.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import InvalidTransitionError


class AlertSeverity(Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def is_higher_than(self, other: "AlertSeverity") -> bool:
        return self.rank > other.rank


_SEVERITY_RANK = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.HIGH: 3,
    AlertSeverity.CRITICAL: 4,
}


class AlertType(Enum):
    """Types of alerts."""
    SECURITY = "security"
    PERFORMANCE = "performance"
    ERROR_RATE = "error_rate"
    AVAILABILITY = "availability"
    CAPACITY = "capacity"
    BUSINESS = "business"
    COMPLIANCE = "compliance"
    FRAUD = "fraud"


class AlertStatus(Enum):
    """Alert lifecycle status."""
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"

    @property
    def is_terminal(self) -> bool:
        return self in (AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE)


class AlertChannel(Enum):
    """Alert notification channels."""
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    WEBHOOK = "webhook"
    PAGERDUTY = "pagerduty"
    DASHBOARD = "dashboard"


class ThreatSeverity(Enum):
    """Severity vocabulary of the security-event audit store."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_alert_id() -> str:
    """Generate unique alert ID."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"alert_{int(time.time() * 1000)}_{suffix}"


@dataclass
class AlertDraft:
    """Content of an alert before the store assigns identity and timestamps."""
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    rule_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Alert:
    """Alert entity."""
    alert_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    triggered_at: datetime
    status: AlertStatus = AlertStatus.TRIGGERED

    # Content
    details: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    rule_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Timing
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None

    # Assignment
    assigned_to: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    # Escalation
    escalation_level: int = 0
    escalation_history: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_draft(cls, draft: AlertDraft, triggered_at: datetime) -> "Alert":
        return cls(
            alert_id=generate_alert_id(),
            alert_type=draft.alert_type,
            severity=draft.severity,
            title=draft.title,
            message=draft.message,
            triggered_at=triggered_at,
            details=dict(draft.details),
            source=draft.source,
            rule_id=draft.rule_id,
            metadata=dict(draft.metadata),
        )

    def is_active(self) -> bool:
        """Check if alert is active (not resolved or false positive)."""
        return not self.status.is_terminal

    def acknowledge(self, actor: str, now: datetime) -> None:
        """Acknowledge the alert."""
        self._require("acknowledge", (AlertStatus.TRIGGERED, AlertStatus.ESCALATED))
        self.status = AlertStatus.ACKNOWLEDGED
        if self.acknowledged_at is None:
            self.acknowledged_at = now
        self.assigned_to = actor

    def start_investigation(self, actor: str, now: datetime) -> None:
        """Move an acknowledged alert into investigation."""
        self._require("investigate", (AlertStatus.ACKNOWLEDGED, AlertStatus.ESCALATED))
        if self.acknowledged_at is None:
            raise InvalidTransitionError(self.alert_id, self.status.value, "investigate")
        self.status = AlertStatus.INVESTIGATING
        self.assigned_to = actor
        self.add_note(actor, "investigation started", now)

    def resolve(self, actor: str, now: datetime, notes: Optional[str] = None) -> None:
        """Resolve the alert."""
        self._require_active("resolve")
        self.status = AlertStatus.RESOLVED
        self.resolved_at = now
        if notes:
            self.add_note(actor, notes, now)

    def mark_false_positive(self, actor: str, now: datetime, notes: Optional[str] = None) -> None:
        """Close the alert as a false positive."""
        self._require_active("mark false positive")
        self.status = AlertStatus.FALSE_POSITIVE
        self.resolved_at = now
        self.add_note(actor, notes or "marked as false positive", now)

    def escalate(self, level_index: int, severity: AlertSeverity, now: datetime) -> bool:
        """Escalate the alert. Returns False when the alert is already closed."""
        if self.status.is_terminal:
            return False

        self.status = AlertStatus.ESCALATED
        if self.escalated_at is None:
            self.escalated_at = now
        if severity.is_higher_than(self.severity):
            self.severity = severity

        self.escalation_level += 1
        self.escalation_history.append({
            'level': level_index,
            'severity': self.severity.value,
            'timestamp': now.isoformat()
        })
        return True

    def add_note(self, actor: str, text: str, now: datetime) -> None:
        """Append a timestamped note."""
        self.notes.append(f"[{now.isoformat()}] {actor}: {text}")

    def _require(self, operation: str, allowed: tuple) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(self.alert_id, self.status.value, operation)

    def _require_active(self, operation: str) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(self.alert_id, self.status.value, operation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.alert_id,
            'type': self.alert_type.value,
            'severity': self.severity.value,
            'status': self.status.value,
            'title': self.title,
            'message': self.message,
            'details': self.details,
            'source': self.source,
            'rule_id': self.rule_id,
            'triggered_at': self.triggered_at.isoformat(),
            'acknowledged_at': self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'escalated_at': self.escalated_at.isoformat() if self.escalated_at else None,
            'assigned_to': self.assigned_to,
            'notes': list(self.notes),
            'metadata': self.metadata,
            'escalation_level': self.escalation_level,
            'escalation_history': list(self.escalation_history)
        }
