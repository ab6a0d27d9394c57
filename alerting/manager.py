"""
Alert manager.

Ties rule evaluation, the alert store, notification dispatch, escalation
scheduling, the event stream and the security sink together. Collaborators
are injected; ``create_alert_manager`` wires the production defaults.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .clock import Clock, SystemClock
from .escalation import EscalationScheduler
from .events import (
    AlertEvent, AlertEventBus, AlertEventHandler, AlertEventType, LoggingAlertEventHandler
)
from .models import Alert, AlertChannel, AlertDraft, AlertSeverity, AlertType
from .notifications import NotificationDispatcher, build_notifiers, resolve_channels
from .rules import AlertRule, EscalationLevel, EscalationPolicy, RuleRegistry, default_rules
from .security import AuditLogSecurityEventSink, SecurityEventSink, map_threat_severity
from .store import AlertStore
from utils.logging import (
    clear_correlation_id, get_enhanced_logger, LogCategory, performance_logging, set_correlation_id
)

logger = get_enhanced_logger(__name__, LogCategory.ALERTING)


class AlertManager:
    """Central alert management system."""

    def __init__(
        self,
        rules: Optional[RuleRegistry] = None,
        store: Optional[AlertStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[EscalationScheduler] = None,
        event_bus: Optional[AlertEventBus] = None,
        security_sink: Optional[SecurityEventSink] = None,
        clock: Optional[Clock] = None
    ):
        self.clock = clock or SystemClock()
        self.rules = rules or RuleRegistry(clock=self.clock)
        self.store = store or AlertStore(self.clock)
        self.event_bus = event_bus or AlertEventBus()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.scheduler = scheduler or EscalationScheduler(clock=self.clock)
        self.security_sink = security_sink or AuditLogSecurityEventSink()

        self.scheduler.set_handler(self._on_escalation)

        logger.info("Alert manager initialized", rules=len(self.rules.get_rules()))

    # Triggering

    @performance_logging
    def check_rules(self, metrics: Any) -> List[Alert]:
        """Evaluate every rule against a metrics snapshot and fire the matches."""
        now = self.clock.now()
        triggered = []

        for rule in self.rules.evaluate(metrics, now):
            # Another caller may have fired the rule since evaluation
            if not self.rules.cooldowns.try_acquire(rule.rule_id, rule.cooldown_minutes, now):
                continue

            draft = AlertDraft(
                alert_type=rule.alert_type,
                severity=rule.severity,
                title=rule.name,
                message=f'Alert rule "{rule.name}" triggered',
                details={
                    'metrics': dict(metrics) if isinstance(metrics, Mapping) else metrics,
                    'rule': rule.name
                },
                source="rule_engine",
                rule_id=rule.rule_id
            )
            triggered.append(self._raise_alert(draft, rule.channels, rule.escalation_policy))

        return triggered

    def create_alert(
        self,
        alert_type: Union[AlertType, str],
        severity: Union[AlertSeverity, str],
        title: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        channels: Optional[Iterable[Union[AlertChannel, str]]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """Raise an ad hoc alert. Returns the new alert id."""
        severity = AlertSeverity(severity)
        draft = AlertDraft(
            alert_type=AlertType(alert_type),
            severity=severity,
            title=title,
            message=message,
            details=details or {},
            source=source,
            metadata=metadata or {}
        )
        explicit = [AlertChannel(c) for c in channels] if channels else None

        alert = self._raise_alert(draft, resolve_channels(severity, explicit))
        return alert.alert_id

    # Lifecycle

    def acknowledge_alert(self, alert_id: str, actor: str) -> Alert:
        alert = self.store.acknowledge(alert_id, actor)
        logger.info("Alert acknowledged", alert_id=alert_id, actor=actor)
        self._publish(AlertEventType.ACKNOWLEDGED, alert, actor)
        return alert

    def start_investigation(self, alert_id: str, actor: str) -> Alert:
        alert = self.store.start_investigation(alert_id, actor)
        logger.info("Alert investigation started", alert_id=alert_id, actor=actor)
        self._publish(AlertEventType.INVESTIGATING, alert, actor)
        return alert

    def resolve_alert(self, alert_id: str, actor: str, notes: Optional[str] = None) -> Alert:
        """Resolve an alert and cancel its pending escalations."""
        alert = self.store.resolve(alert_id, actor, notes)
        self.scheduler.disarm(alert_id)
        logger.info("Alert resolved", alert_id=alert_id, actor=actor)
        self._publish(AlertEventType.RESOLVED, alert, actor)
        return alert

    def mark_false_positive(self, alert_id: str, actor: str, notes: Optional[str] = None) -> Alert:
        alert = self.store.mark_false_positive(alert_id, actor, notes)
        self.scheduler.disarm(alert_id)
        logger.info("Alert marked as false positive", alert_id=alert_id, actor=actor)
        self._publish(AlertEventType.FALSE_POSITIVE, alert, actor)
        return alert

    def add_note(self, alert_id: str, actor: str, text: str) -> Alert:
        return self.store.add_note(alert_id, actor, text)

    # Queries

    def get_active_alerts(self) -> List[Alert]:
        return self.store.active_alerts()

    def get_alert(self, alert_id: str) -> Alert:
        """Get an alert by id; raises AlertNotFoundError if unknown."""
        return self.store.require(alert_id)

    def find_alert(self, alert_id: str) -> Optional[Alert]:
        return self.store.get(alert_id)

    def get_statistics(self) -> Dict[str, Any]:
        return self.store.statistics()

    def get_delivery_statistics(self) -> Dict[str, Dict[str, int]]:
        return self.dispatcher.get_channel_stats()

    # Rules

    def add_rule(self, rule: AlertRule) -> None:
        self.rules.add_rule(rule)

    def remove_rule(self, rule_id: str) -> None:
        self.rules.remove_rule(rule_id)

    def toggle_rule(self, rule_id: str, enabled: bool) -> None:
        self.rules.set_enabled(rule_id, enabled)

    def get_rules(self) -> List[AlertRule]:
        return self.rules.get_rules()

    # Events

    def subscribe(
        self,
        callback: Callable[[AlertEvent], None],
        event_types: Optional[Iterable[AlertEventType]] = None
    ) -> AlertEventHandler:
        return self.event_bus.subscribe(callback, event_types)

    def unsubscribe(self, handler: AlertEventHandler) -> None:
        self.event_bus.remove_handler(handler)

    # Background work

    def start(self) -> None:
        """Start the escalation thread and the event worker."""
        self.scheduler.start()
        self.event_bus.start()
        logger.info("Alert manager started")

    def shutdown(self) -> None:
        """Stop background threads and release the notification pool."""
        self.scheduler.stop()
        self.event_bus.stop()
        self.dispatcher.shutdown()
        logger.info("Alert manager stopped")

    # Private methods

    def _raise_alert(
        self,
        draft: AlertDraft,
        channels: Iterable[AlertChannel],
        policy: Optional[EscalationPolicy] = None
    ) -> Alert:
        alert = self.store.create(draft)

        logger.warning(
            "Alert triggered",
            alert_id=alert.alert_id,
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            title=alert.title,
            rule=alert.rule_id
        )

        if policy and policy.levels:
            self.scheduler.arm(alert.alert_id, alert.triggered_at, policy)

        if alert.alert_type == AlertType.SECURITY:
            self._record_security_event(alert)

        self._publish(AlertEventType.TRIGGERED, alert)
        self.dispatcher.dispatch(alert, channels)
        return alert

    def _on_escalation(self, alert_id: str, level_index: int, level: EscalationLevel) -> None:
        """Scheduler callback for a due escalation level."""
        set_correlation_id(alert_id)
        try:
            self._escalate(alert_id, level_index, level)
        finally:
            clear_correlation_id()

    def _escalate(self, alert_id: str, level_index: int, level: EscalationLevel) -> None:
        alert = self.store.escalate(alert_id, level_index, level)
        if alert is None:
            logger.debug("Escalation skipped for closed alert", alert_id=alert_id, escalation_index=level_index)
            return

        logger.warning(
            "Alert escalated",
            alert_id=alert_id,
            escalation_index=level_index,
            severity=alert.severity.value,
            escalation_level=alert.escalation_level
        )
        self._publish(AlertEventType.ESCALATED, alert, data={'level': level_index})

        self.dispatcher.dispatch(alert, resolve_channels(alert.severity, level.channels))
        if level.notify_users:
            self.dispatcher.notify_users(alert, level.notify_users)

    def _record_security_event(self, alert: Alert) -> None:
        try:
            self.security_sink.record(
                "alert_triggered",
                map_threat_severity(alert.severity),
                "0.0.0.0",
                "system",
                alert.title,
                alert.details,
                "alert",
                False
            )
        except Exception as e:
            logger.log_error_with_context(e, {'alert_id': alert.alert_id, 'operation': 'security_event'})

    def _publish(
        self,
        event_type: AlertEventType,
        alert: Alert,
        actor: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        self.event_bus.publish(AlertEvent(
            event_type=event_type,
            alert=alert,
            timestamp=self.clock.now(),
            actor=actor,
            data=data or {}
        ))


def create_alert_manager(settings=None, clock: Optional[Clock] = None) -> AlertManager:
    """Build an AlertManager with notifiers and default rules from settings."""
    if settings is None:
        from configs.settings import get_settings
        settings = get_settings()

    for issue in settings.validate_channel_destinations():
        logger.warning("Alerting configuration issue", issue=issue)

    clock = clock or SystemClock()
    event_bus = AlertEventBus()
    event_bus.add_handler(LoggingAlertEventHandler())
    dispatcher = NotificationDispatcher(
        build_notifiers(settings, event_bus),
        max_workers=settings.notification_max_workers
    )

    rules = RuleRegistry(clock=clock)
    for rule in default_rules(
        settings.get_security_team_contacts() or None,
        settings.get_leadership_contacts() or None
    ):
        rules.add_rule(rule)

    return AlertManager(
        rules=rules,
        dispatcher=dispatcher,
        event_bus=event_bus,
        clock=clock
    )
