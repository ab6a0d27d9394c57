"""
Tests for the alert manager: triggering, lifecycle, escalation and notification.
"""

import threading

import pytest

from alerting.events import AlertEventType
from alerting.exceptions import AlertNotFoundError, InvalidTransitionError
from alerting.manager import AlertManager, create_alert_manager
from alerting.models import AlertChannel, AlertSeverity, AlertStatus, AlertType, ThreatSeverity
from alerting.notifications import DeliveryStatus, NotificationDispatcher
from alerting.rules import AlertRule, EscalationLevel, EscalationPolicy, RuleRegistry, metric_value
from alerting.security import SecurityEventSink


def queue_rule() -> AlertRule:
    """Medium rule escalating to high after 5 minutes and critical after 15."""
    return AlertRule(
        rule_id="queue_backlog",
        name="Booking Queue Backlog",
        alert_type=AlertType.AVAILABILITY,
        condition=lambda m: metric_value(m, "queue_depth") > 100,
        severity=AlertSeverity.MEDIUM,
        channels=[AlertChannel.SLACK],
        cooldown_minutes=60,
        escalation_policy=EscalationPolicy(levels=[
            EscalationLevel(after_minutes=5, severity=AlertSeverity.HIGH, channels=[AlertChannel.SMS]),
            EscalationLevel(after_minutes=15, severity=AlertSeverity.CRITICAL, channels=[AlertChannel.PAGERDUTY]),
        ])
    )


class TestRuleTriggering:
    """Test check_rules."""

    def test_error_rate_scenario(self, manager, notifiers):
        """Test trigger, cooldown suppression and resolution of the error rate rule."""
        alerts = manager.check_rules({"error_rate": 15})

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.status == AlertStatus.TRIGGERED
        assert alert.severity == AlertSeverity.HIGH
        assert alert.rule_id == "high_error_rate"
        assert alert.title == "High Error Rate"
        assert alert.source == "rule_engine"
        assert alert.details['metrics'] == {"error_rate": 15}
        assert notifiers[AlertChannel.SLACK].call_count == 1
        assert notifiers[AlertChannel.EMAIL].call_count == 1

        assert manager.check_rules({"error_rate": 15}) == []

        resolved = manager.resolve_alert(alert.alert_id, "ops1", "fixed deploy")
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at is not None
        assert any("ops1" in note and "fixed deploy" in note for note in resolved.notes)

    def test_fires_again_after_cooldown(self, manager, clock):
        assert len(manager.check_rules({"error_rate": 15})) == 1

        clock.advance(minutes=14)
        assert manager.check_rules({"error_rate": 15}) == []

        clock.advance(minutes=1)
        assert len(manager.check_rules({"error_rate": 15})) == 1
        assert manager.get_statistics()['total'] == 2

    def test_no_match_no_alert(self, manager, notifiers):
        assert manager.check_rules({"error_rate": 2, "disk_usage": 40}) == []
        assert all(n.call_count == 0 for n in notifiers.values())

    def test_failing_rule_does_not_stop_others(self, manager):
        manager.add_rule(AlertRule(
            rule_id="broken",
            name="Broken",
            alert_type=AlertType.BUSINESS,
            condition=lambda m: m["bookings"]["missing"] > 1,
            severity=AlertSeverity.LOW,
        ))

        alerts = manager.check_rules({"error_rate": 15})

        assert [a.rule_id for a in alerts] == ["high_error_rate"]
        assert manager.rules.cooldowns.expires_at("broken") is None

    def test_disabled_rule(self, manager):
        manager.toggle_rule("high_error_rate", False)
        assert manager.check_rules({"error_rate": 15}) == []

        manager.toggle_rule("high_error_rate", True)
        assert len(manager.check_rules({"error_rate": 15})) == 1

    def test_remove_rule(self, manager):
        manager.remove_rule("high_error_rate")
        assert "high_error_rate" not in {r.rule_id for r in manager.get_rules()}
        assert manager.check_rules({"error_rate": 15}) == []

    def test_concurrent_checks_fire_once(self, manager):
        """Test that racing check_rules calls never double-fire a rule."""
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(len(manager.check_rules({"error_rate": 50})))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sum(results) == 1
        assert manager.get_statistics()['total'] == 1


class TestCreateAlert:
    """Test the ad hoc alert path."""

    def test_fraud_scenario(self, manager, notifiers):
        alert_id = manager.create_alert("fraud", "high", "Suspicious booking", "score 92")

        alert = manager.get_alert(alert_id)
        assert alert.status == AlertStatus.TRIGGERED
        assert alert.alert_type == AlertType.FRAUD
        assert alert.severity == AlertSeverity.HIGH
        assert notifiers[AlertChannel.EMAIL].call_count == 1
        assert notifiers[AlertChannel.SLACK].call_count == 1
        assert [a.alert_id for a in manager.get_active_alerts()] == [alert_id]

        manager.resolve_alert(alert_id, "ops1")

        assert manager.get_active_alerts() == []
        assert manager.get_alert(alert_id).status == AlertStatus.RESOLVED

    def test_explicit_channels(self, manager, notifiers):
        manager.create_alert(
            AlertType.COMPLIANCE, AlertSeverity.CRITICAL, "Audit gap", "missing records",
            channels=["webhook"]
        )
        assert notifiers[AlertChannel.WEBHOOK].call_count == 1
        assert notifiers[AlertChannel.PAGERDUTY].call_count == 0

    def test_low_severity_goes_to_dashboard(self, manager, notifiers):
        received = []
        manager.subscribe(received.append, [AlertEventType.DASHBOARD])

        manager.create_alert("capacity", "low", "Cache warming", "hit rate low")

        assert len(received) == 1
        assert all(n.call_count == 0 for n in notifiers.values())

    def test_unknown_type_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.create_alert("weather", "high", "Storm", "rain")

    def test_channel_failure_does_not_break_creation(self, clock, make_notifier):
        email = make_notifier(AlertChannel.EMAIL)
        slack = make_notifier(AlertChannel.SLACK, error=RuntimeError("chat down"))
        manager = AlertManager(dispatcher=NotificationDispatcher([email, slack]), clock=clock)

        try:
            alert_id = manager.create_alert("fraud", "high", "Suspicious booking", "score 92")
            stats = manager.get_delivery_statistics()
        finally:
            manager.shutdown()

        assert manager.find_alert(alert_id) is not None
        assert email.call_count == 1
        assert stats['slack']['failed'] == 1
        assert stats['email']['sent'] == 1


class TestLifecycle:
    """Test lifecycle operations through the manager."""

    def test_acknowledge_investigate_resolve(self, manager):
        alert_id = manager.create_alert("business", "medium", "Revenue dip", "down 12%")

        assert manager.acknowledge_alert(alert_id, "ops1").status == AlertStatus.ACKNOWLEDGED
        assert manager.start_investigation(alert_id, "ops1").status == AlertStatus.INVESTIGATING
        manager.add_note(alert_id, "ops1", "pricing bug suspected")
        resolved = manager.resolve_alert(alert_id, "ops1", "pricing rolled back")

        assert resolved.status == AlertStatus.RESOLVED
        assert any("pricing bug suspected" in note for note in resolved.notes)

    def test_invalid_transitions(self, manager):
        alert_id = manager.create_alert("business", "medium", "Revenue dip", "down 12%")

        with pytest.raises(InvalidTransitionError):
            manager.start_investigation(alert_id, "ops1")

        manager.mark_false_positive(alert_id, "ops1", "test traffic")
        with pytest.raises(InvalidTransitionError):
            manager.resolve_alert(alert_id, "ops1")

    def test_unknown_alert(self, manager):
        assert manager.find_alert("alert_missing") is None
        with pytest.raises(AlertNotFoundError):
            manager.get_alert("alert_missing")
        with pytest.raises(AlertNotFoundError):
            manager.acknowledge_alert("alert_missing", "ops1")

    def test_lifecycle_events(self, manager):
        events = []
        manager.subscribe(lambda e: events.append((e.event_type, e.actor)))

        alert_id = manager.create_alert("business", "medium", "Revenue dip", "down 12%")
        manager.acknowledge_alert(alert_id, "ops1")
        manager.start_investigation(alert_id, "ops2")
        manager.resolve_alert(alert_id, "ops2")

        assert events == [
            (AlertEventType.TRIGGERED, None),
            (AlertEventType.ACKNOWLEDGED, "ops1"),
            (AlertEventType.INVESTIGATING, "ops2"),
            (AlertEventType.RESOLVED, "ops2"),
        ]

    def test_unsubscribe(self, manager):
        events = []
        handler = manager.subscribe(events.append)
        manager.unsubscribe(handler)

        manager.create_alert("business", "medium", "Revenue dip", "down 12%")
        assert events == []

    def test_statistics_consistency(self, manager):
        ids = [
            manager.create_alert("fraud", "high", "a", "a"),
            manager.create_alert("security", "critical", "b", "b"),
            manager.create_alert("capacity", "medium", "c", "c"),
        ]
        manager.check_rules({"error_rate": 30})
        manager.resolve_alert(ids[0], "ops1")
        manager.mark_false_positive(ids[1], "ops1")

        stats = manager.get_statistics()
        assert stats['total'] == 4
        assert stats['active'] + stats['resolved'] == stats['total']
        assert sum(stats['by_type'].values()) == stats['total']
        assert sum(stats['by_severity'].values()) == stats['total']


class TestEscalation:
    """Test time-based escalation driven by the manual clock."""

    def test_levels_at_5_and_15_minutes(self, manager, clock, notifiers):
        manager.add_rule(queue_rule())
        alert = manager.check_rules({"queue_depth": 500})[0]
        assert alert.severity == AlertSeverity.MEDIUM

        clock.advance(minutes=5)
        manager.scheduler.run_pending()

        escalated = manager.get_alert(alert.alert_id)
        assert escalated.status == AlertStatus.ESCALATED
        assert escalated.severity == AlertSeverity.HIGH
        assert escalated.escalated_at == clock.now()
        assert notifiers[AlertChannel.SMS].call_count == 1
        assert notifiers[AlertChannel.PAGERDUTY].call_count == 0

        clock.advance(minutes=10)
        manager.scheduler.run_pending()

        escalated = manager.get_alert(alert.alert_id)
        assert escalated.severity == AlertSeverity.CRITICAL
        assert escalated.escalation_level == 2
        assert notifiers[AlertChannel.PAGERDUTY].call_count == 1
        assert notifiers[AlertChannel.PAGERDUTY].sent[0].severity == AlertSeverity.CRITICAL
        assert manager.scheduler.stats['handler_errors'] == 0

    def test_resolve_cancels_pending_levels(self, manager, clock, notifiers):
        manager.add_rule(queue_rule())
        alert = manager.check_rules({"queue_depth": 500})[0]

        clock.advance(minutes=5)
        manager.scheduler.run_pending()
        clock.advance(minutes=5)
        manager.resolve_alert(alert.alert_id, "ops1")

        assert manager.scheduler.pending_count(alert.alert_id) == 0

        clock.advance(minutes=60)
        manager.scheduler.run_pending()

        assert notifiers[AlertChannel.PAGERDUTY].call_count == 0
        assert manager.get_alert(alert.alert_id).status == AlertStatus.RESOLVED

    def test_false_positive_cancels_pending_levels(self, manager, clock, notifiers):
        manager.add_rule(queue_rule())
        alert = manager.check_rules({"queue_depth": 500})[0]
        manager.mark_false_positive(alert.alert_id, "ops1")

        clock.advance(minutes=30)
        manager.scheduler.run_pending()

        assert notifiers[AlertChannel.SMS].call_count == 0

    def test_escalation_racing_resolve_is_ignored(self, manager, notifiers):
        """Test that a level firing after resolution changes nothing."""
        manager.add_rule(queue_rule())
        alert = manager.check_rules({"queue_depth": 500})[0]
        manager.store.resolve(alert.alert_id, "ops1")

        manager._on_escalation(alert.alert_id, 0, queue_rule().escalation_policy.levels[0])

        assert manager.get_alert(alert.alert_id).status == AlertStatus.RESOLVED
        assert notifiers[AlertChannel.SMS].call_count == 0

    def test_acknowledged_alert_still_escalates(self, manager, clock):
        manager.add_rule(queue_rule())
        alert = manager.check_rules({"queue_depth": 500})[0]
        manager.acknowledge_alert(alert.alert_id, "ops1")

        clock.advance(minutes=5)
        manager.scheduler.run_pending()

        assert manager.get_alert(alert.alert_id).status == AlertStatus.ESCALATED

    def test_escalation_event(self, manager, clock):
        events = []
        manager.subscribe(events.append, [AlertEventType.ESCALATED])
        manager.add_rule(queue_rule())
        manager.check_rules({"queue_depth": 500})

        clock.advance(minutes=5)
        manager.scheduler.run_pending()

        assert len(events) == 1
        assert events[0].data == {'level': 0}


class TestSecurityAlerts:
    """Test security-typed alert side effects."""

    def test_security_rule_records_event(self, manager, security_sink, notifiers):
        alert = manager.check_rules({"threats": 3})[0]

        assert alert.alert_type == AlertType.SECURITY
        assert len(security_sink.events) == 1
        event = security_sink.events[0]
        assert event['event_type'] == "alert_triggered"
        assert event['severity'] == ThreatSeverity.CRITICAL
        assert event['source_ip'] == "0.0.0.0"
        assert event['user_agent'] == "system"
        assert event['message'] == "Security Threat Detected"
        assert event['action'] == "alert"
        assert event['blocked'] is False
        for channel in (AlertChannel.EMAIL, AlertChannel.SMS, AlertChannel.PAGERDUTY):
            assert notifiers[channel].call_count == 1

    def test_ad_hoc_security_alert_records_event(self, manager, security_sink):
        manager.create_alert("security", "medium", "Login burst", "many failed logins")
        assert security_sink.events[0]['severity'] == ThreatSeverity.MEDIUM

    def test_non_security_alert_not_recorded(self, manager, security_sink):
        manager.create_alert("fraud", "high", "Suspicious booking", "score 92")
        assert security_sink.events == []

    def test_security_escalation_notifies_contacts(self, manager, clock, notifiers):
        manager.check_rules({"threats": 1})

        clock.advance(minutes=5)
        manager.scheduler.run_pending()

        assert ["security-team@itwhip.com"] in notifiers[AlertChannel.EMAIL].recipients

        clock.advance(minutes=10)
        manager.scheduler.run_pending()

        assert ["cto@itwhip.com"] in notifiers[AlertChannel.EMAIL].recipients
        assert manager.scheduler.pending_count() == 0

    def test_sink_failure_is_contained(self, clock, dispatcher):
        class BrokenSink(SecurityEventSink):
            def record(self, *args):
                raise IOError("audit store offline")

        manager = AlertManager(dispatcher=dispatcher, security_sink=BrokenSink(), clock=clock)
        alert_id = manager.create_alert("security", "high", "Token replay", "replayed token")

        assert manager.get_alert(alert_id).status == AlertStatus.TRIGGERED


class TestFactory:
    """Test wiring from settings."""

    def test_create_alert_manager(self, test_settings, clock):
        manager = create_alert_manager(test_settings, clock=clock)
        try:
            assert len(manager.get_rules()) == 6

            alert = manager.check_rules({"error_rate": 15})[0]
            log = manager.dispatcher.get_delivery_log(alert.alert_id)
        finally:
            manager.shutdown()

        # Testing settings disable every external channel
        assert {r.status for r in log} == {DeliveryStatus.SKIPPED}

    def test_start_and_shutdown(self, clock):
        manager = AlertManager(rules=RuleRegistry(clock=clock), clock=clock)
        manager.start()
        assert manager.scheduler.is_running
        assert manager.event_bus.running

        manager.shutdown()
        assert not manager.scheduler.is_running
        assert not manager.event_bus.running
