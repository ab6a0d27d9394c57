"""
In-memory alert store and lifecycle operations.
"""

import copy
import threading
from typing import Any, Dict, List, Optional

from .clock import Clock, SystemClock
from .exceptions import AlertNotFoundError
from .models import Alert, AlertDraft, AlertSeverity, AlertStatus, AlertType
from .rules import EscalationLevel
from utils.logging import get_logger

logger = get_logger(__name__)


class AlertStore:
    """Holds every alert for the life of the process.

    All mutations happen under a single lock. Reads return deep copies so
    callers always see a consistent snapshot.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._alerts: Dict[str, Alert] = {}
        self._lock = threading.RLock()

    def create(self, draft: AlertDraft) -> Alert:
        """Create and store a new triggered alert."""
        with self._lock:
            alert = Alert.from_draft(draft, self._clock.now())
            while alert.alert_id in self._alerts:
                alert = Alert.from_draft(draft, alert.triggered_at)
            self._alerts[alert.alert_id] = alert
            return copy.deepcopy(alert)

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert else None

    def require(self, alert_id: str) -> Alert:
        """Get an alert or raise AlertNotFoundError."""
        alert = self.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def acknowledge(self, alert_id: str, actor: str) -> Alert:
        with self._lock:
            alert = self._get_live(alert_id)
            alert.acknowledge(actor, self._clock.now())
            logger.debug(f"Alert {alert_id} acknowledged by {actor}")
            return copy.deepcopy(alert)

    def start_investigation(self, alert_id: str, actor: str) -> Alert:
        with self._lock:
            alert = self._get_live(alert_id)
            alert.start_investigation(actor, self._clock.now())
            return copy.deepcopy(alert)

    def resolve(self, alert_id: str, actor: str, notes: Optional[str] = None) -> Alert:
        with self._lock:
            alert = self._get_live(alert_id)
            alert.resolve(actor, self._clock.now(), notes)
            logger.debug(f"Alert {alert_id} resolved by {actor}")
            return copy.deepcopy(alert)

    def mark_false_positive(self, alert_id: str, actor: str, notes: Optional[str] = None) -> Alert:
        with self._lock:
            alert = self._get_live(alert_id)
            alert.mark_false_positive(actor, self._clock.now(), notes)
            return copy.deepcopy(alert)

    def add_note(self, alert_id: str, actor: str, text: str) -> Alert:
        with self._lock:
            alert = self._get_live(alert_id)
            alert.add_note(actor, text, self._clock.now())
            return copy.deepcopy(alert)

    def escalate(self, alert_id: str, level_index: int, level: EscalationLevel) -> Optional[Alert]:
        """Apply an escalation level.

        Returns None, without changing anything, when the alert is unknown or
        already closed.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            if not alert.escalate(level_index, level.severity, self._clock.now()):
                return None
            return copy.deepcopy(alert)

    def active_alerts(self) -> List[Alert]:
        """All alerts that are neither resolved nor false positives, newest first."""
        with self._lock:
            alerts = [copy.deepcopy(a) for a in self._alerts.values() if a.is_active()]
        return sorted(alerts, key=lambda a: a.triggered_at, reverse=True)

    def all_alerts(self) -> List[Alert]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._alerts.values()]

    def statistics(self) -> Dict[str, Any]:
        """Aggregate counts computed by a full scan.

        Closed alerts (resolved and false positive) count as resolved so that
        active + resolved == total.
        """
        with self._lock:
            alerts = list(self._alerts.values())

            stats = {
                'total': len(alerts),
                'active': 0,
                'resolved': 0,
                'by_severity': {severity.value: 0 for severity in AlertSeverity},
                'by_type': {alert_type.value: 0 for alert_type in AlertType},
                'by_status': {status.value: 0 for status in AlertStatus},
            }

            for alert in alerts:
                if alert.is_active():
                    stats['active'] += 1
                else:
                    stats['resolved'] += 1

                stats['by_severity'][alert.severity.value] += 1
                stats['by_type'][alert.alert_type.value] += 1
                stats['by_status'][alert.status.value] += 1

        return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    def _get_live(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert
