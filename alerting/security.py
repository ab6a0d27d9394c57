"""
Security-event sink for security-typed alerts.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from .models import AlertSeverity, ThreatSeverity
from utils.logging import get_enhanced_logger, LogCategory, LogLevel


_THREAT_SEVERITY = {
    AlertSeverity.CRITICAL: ThreatSeverity.CRITICAL,
    AlertSeverity.HIGH: ThreatSeverity.HIGH,
    AlertSeverity.MEDIUM: ThreatSeverity.MEDIUM,
    AlertSeverity.LOW: ThreatSeverity.LOW,
}


def map_threat_severity(severity: AlertSeverity) -> ThreatSeverity:
    """Map an alert severity onto the security store's vocabulary."""
    return _THREAT_SEVERITY.get(severity, ThreatSeverity.MEDIUM)


class SecurityEventSink(ABC):
    """Destination for security events raised by the alerting engine."""

    @abstractmethod
    def record(
        self,
        event_type: str,
        severity: ThreatSeverity,
        source_ip: str,
        user_agent: str,
        message: str,
        details: Optional[Dict[str, Any]],
        action: str,
        blocked: bool
    ) -> None:
        """Persist one security event."""
        pass


class AuditLogSecurityEventSink(SecurityEventSink):
    """Writes security events to the audit log."""

    def __init__(self):
        self.logger = get_enhanced_logger(__name__, LogCategory.SECURITY)
        self._lock = threading.Lock()

    def record(
        self,
        event_type: str,
        severity: ThreatSeverity,
        source_ip: str,
        user_agent: str,
        message: str,
        details: Optional[Dict[str, Any]],
        action: str,
        blocked: bool
    ) -> None:
        with self._lock:
            audit_context = {
                'event_type': event_type,
                'severity': severity.value,
                'source_ip': source_ip,
                'user_agent': user_agent,
                'action': action,
                'blocked': blocked,
                'timestamp': datetime.utcnow().isoformat(),
                'details': details or {}
            }

            self.logger._log(
                LogLevel.AUDIT.value,
                f"Security event {event_type} [{severity.value}]: {message}",
                category=LogCategory.AUDIT,
                error_context=audit_context
            )
