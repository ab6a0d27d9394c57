"""
Unit tests for the security-event sink.
"""

import logging

import pytest

from alerting.models import AlertSeverity, ThreatSeverity
from alerting.security import AuditLogSecurityEventSink, map_threat_severity


class TestThreatSeverityMapping:
    """Test alert to threat severity mapping."""

    @pytest.mark.parametrize("severity,expected", [
        (AlertSeverity.CRITICAL, ThreatSeverity.CRITICAL),
        (AlertSeverity.HIGH, ThreatSeverity.HIGH),
        (AlertSeverity.MEDIUM, ThreatSeverity.MEDIUM),
        (AlertSeverity.LOW, ThreatSeverity.LOW),
    ])
    def test_mapping(self, severity, expected):
        assert map_threat_severity(severity) is expected


class TestAuditLogSecurityEventSink:
    """Test audit log output."""

    def test_record_writes_audit_entry(self, caplog):
        sink = AuditLogSecurityEventSink()

        with caplog.at_level(logging.DEBUG, logger="alerting.security"):
            sink.record(
                "alert_triggered",
                ThreatSeverity.CRITICAL,
                "0.0.0.0",
                "system",
                "Security Threat Detected",
                {"threats": 3},
                "alert",
                False
            )

        records = [r for r in caplog.records if r.name == "alerting.security"]
        assert len(records) == 1
        record = records[0]
        assert "alert_triggered" in record.getMessage()
        assert record.category == "audit"
        assert record.error_context['severity'] == "CRITICAL"
        assert record.error_context['details'] == {"threats": 3}
        assert record.error_context['blocked'] is False
