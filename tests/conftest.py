"""
Pytest configuration and shared fixtures.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import threading
import time
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from alerting.clock import Clock
from alerting.events import AlertEventBus
from alerting.exceptions import DeliveryError
from alerting.manager import AlertManager
from alerting.models import Alert, AlertChannel
from alerting.notifications import AlertNotifier, DashboardNotifier, NotificationDispatcher
from alerting.rules import RuleRegistry, default_rules
from alerting.security import SecurityEventSink
from configs.settings import get_settings


class ManualClock(Clock):
    """Clock that only moves when a test advances it."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 6, 1, 12, 0, 0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        with self._lock:
            self._now += timedelta(minutes=minutes, seconds=seconds)
            return self._now


class RecordingNotifier(AlertNotifier):
    """Notifier that records what it was asked to send."""

    def __init__(
        self,
        channel: AlertChannel,
        fail: bool = False,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        timeout: float = 2.0
    ):
        super().__init__(enabled=True, timeout=timeout)
        self.channel = channel
        self.fail = fail
        self.error = error
        self.delay = delay
        self.sent: List[Alert] = []
        self.recipients: List[Optional[List[str]]] = []
        self._lock = threading.Lock()

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.sent.append(alert)
            self.recipients.append(recipients)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise DeliveryError(self.channel.value, f"{self.channel.value} unavailable")

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.sent)


class RecordingSecuritySink(SecurityEventSink):
    """Security sink that keeps every recorded event."""

    def __init__(self):
        self.events = []

    def record(self, event_type, severity, source_ip, user_agent, message, details, action, blocked):
        self.events.append({
            'event_type': event_type,
            'severity': severity,
            'source_ip': source_ip,
            'user_agent': user_agent,
            'message': message,
            'details': details,
            'action': action,
            'blocked': blocked
        })


@pytest.fixture(scope="session")
def test_settings():
    """Test settings configuration."""
    return get_settings()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def event_bus() -> AlertEventBus:
    return AlertEventBus()


@pytest.fixture
def notifiers():
    """Recording notifiers for every external channel."""
    return {
        channel: RecordingNotifier(channel)
        for channel in (
            AlertChannel.EMAIL,
            AlertChannel.SMS,
            AlertChannel.SLACK,
            AlertChannel.WEBHOOK,
            AlertChannel.PAGERDUTY,
        )
    }


@pytest.fixture
def make_notifier():
    """Factory for recording notifiers with custom failure behaviour."""
    return RecordingNotifier


@pytest.fixture
def make_clock():
    return ManualClock


@pytest.fixture
def dispatcher(notifiers, event_bus):
    dispatcher = NotificationDispatcher(
        list(notifiers.values()) + [DashboardNotifier(event_bus)],
        max_workers=8,
        grace_seconds=0.5
    )
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def security_sink() -> RecordingSecuritySink:
    return RecordingSecuritySink()


@pytest.fixture
def manager(clock, dispatcher, event_bus, security_sink):
    """Alert manager with the default rules, a manual clock and recording channels."""
    rules = RuleRegistry(clock=clock)
    for rule in default_rules():
        rules.add_rule(rule)

    manager = AlertManager(
        rules=rules,
        dispatcher=dispatcher,
        event_bus=event_bus,
        security_sink=security_sink,
        clock=clock
    )
    yield manager
    manager.shutdown()
