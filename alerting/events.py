"""
Alert event stream for dashboards and other in-process subscribers.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from queue import Empty, Queue
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .models import Alert, AlertSeverity
from utils.logging import get_enhanced_logger, get_logger, LogCategory

logger = get_logger(__name__)
event_logger = get_enhanced_logger(__name__, LogCategory.ALERTING)


class AlertEventType(Enum):
    """Alert lifecycle events."""
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"
    ESCALATED = "escalated"
    DASHBOARD = "dashboard"


@dataclass
class AlertEvent:
    """An event about an alert, carrying a snapshot of the alert."""
    event_type: AlertEventType
    alert: Alert
    timestamp: datetime = field(default_factory=datetime.now)
    actor: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'alert': self.alert.to_dict(),
            'timestamp': self.timestamp.isoformat(),
            'actor': self.actor,
            'data': self.data
        }


@dataclass
class AlertEventStats:
    """Statistics for alert events."""
    total_events: int = 0
    events_by_type: Dict[AlertEventType, int] = field(default_factory=lambda: defaultdict(int))
    events_by_severity: Dict[AlertSeverity, int] = field(default_factory=lambda: defaultdict(int))
    handler_errors: int = 0
    last_event_time: Optional[datetime] = None


class AlertEventHandler:
    """Base class for alert event handlers."""

    def __init__(self, name: str, event_types: Optional[Iterable[AlertEventType]] = None):
        self.name = name
        self.enabled = True
        self.event_types: Optional[Set[AlertEventType]] = set(event_types) if event_types else None
        self.events_handled = 0

    def accepts(self, event: AlertEvent) -> bool:
        return self.enabled and (self.event_types is None or event.event_type in self.event_types)

    def handle_event(self, event: AlertEvent) -> bool:
        """Handle an alert event. Returns False if the handler raised."""
        if not self.accepts(event):
            return True

        try:
            self._handle_event_impl(event)
            self.events_handled += 1
            return True
        except Exception as e:
            logger.error(f"Error handling alert event in {self.name}: {e}")
            return False

    def _handle_event_impl(self, event: AlertEvent) -> None:
        """Implementation of event handling - override in subclasses."""
        pass


class CallbackAlertEventHandler(AlertEventHandler):
    """Handler that forwards events to a plain callable."""

    def __init__(
        self,
        callback: Callable[[AlertEvent], None],
        event_types: Optional[Iterable[AlertEventType]] = None,
        name: Optional[str] = None
    ):
        super().__init__(name or getattr(callback, "__name__", "CallbackHandler"), event_types)
        self.callback = callback

    def _handle_event_impl(self, event: AlertEvent) -> None:
        self.callback(event)


class LoggingAlertEventHandler(AlertEventHandler):
    """Handler that logs alert events."""

    def __init__(self):
        super().__init__("LoggingHandler")

    def _handle_event_impl(self, event: AlertEvent) -> None:
        event_logger.log_alert_event(
            event.event_type.value,
            event.alert.alert_id,
            event.alert.severity.value,
            event.alert.alert_type.value,
            title=event.alert.title,
            status=event.alert.status.value,
            actor=event.actor
        )


class AlertEventBus:
    """Event bus for alert events.

    Until ``start()`` is called events are delivered synchronously on the
    publishing thread. Once started they are queued and delivered by a
    worker thread; ``stop()`` drains whatever is left in the queue.
    """

    def __init__(self):
        self.handlers: List[AlertEventHandler] = []
        self.event_queue: Queue = Queue()
        self.stats = AlertEventStats()
        self.running = False
        self.worker_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def add_handler(self, handler: AlertEventHandler) -> None:
        """Add an alert event handler."""
        with self._lock:
            self.handlers.append(handler)
        logger.info(f"Added alert event handler: {handler.name}")

    def remove_handler(self, handler: AlertEventHandler) -> None:
        """Remove an alert event handler."""
        with self._lock:
            if handler in self.handlers:
                self.handlers.remove(handler)
                logger.info(f"Removed alert event handler: {handler.name}")

    def subscribe(
        self,
        callback: Callable[[AlertEvent], None],
        event_types: Optional[Iterable[AlertEventType]] = None
    ) -> AlertEventHandler:
        """Register a callable; returns the handler so it can be removed later."""
        handler = CallbackAlertEventHandler(callback, event_types)
        self.add_handler(handler)
        return handler

    def publish(self, event: AlertEvent) -> None:
        """Publish an alert event."""
        self._update_stats(event)

        if self.running:
            self.event_queue.put(event)
        else:
            self._handle_event(event)

        logger.debug(f"Published alert event: {event.event_type.value}")

    def start(self) -> None:
        """Start the event processing thread."""
        if self.running:
            return

        self.running = True
        self.worker_thread = threading.Thread(
            target=self._process_events,
            name="AlertEventBus",
            daemon=True
        )
        self.worker_thread.start()
        logger.info("Alert event bus started")

    def stop(self) -> None:
        """Stop the event processing thread."""
        if not self.running:
            return

        self.running = False
        if self.worker_thread:
            self.worker_thread.join(timeout=5.0)
        self.worker_thread = None

        self._drain()
        logger.info("Alert event bus stopped")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_events': self.stats.total_events,
                'events_by_type': {k.value: v for k, v in self.stats.events_by_type.items()},
                'events_by_severity': {k.value: v for k, v in self.stats.events_by_severity.items()},
                'handler_errors': self.stats.handler_errors,
                'last_event_time': self.stats.last_event_time,
                'handlers': len(self.handlers),
                'running': self.running
            }

    def _update_stats(self, event: AlertEvent) -> None:
        with self._lock:
            self.stats.total_events += 1
            self.stats.events_by_type[event.event_type] += 1
            self.stats.events_by_severity[event.alert.severity] += 1
            self.stats.last_event_time = event.timestamp

    def _process_events(self) -> None:
        while self.running:
            try:
                event = self.event_queue.get(timeout=0.5)
            except Empty:
                continue

            try:
                self._handle_event(event)
            except Exception as e:
                logger.error(f"Error processing alert event: {e}")

    def _drain(self) -> None:
        while True:
            try:
                event = self.event_queue.get_nowait()
            except Empty:
                return
            self._handle_event(event)

    def _handle_event(self, event: AlertEvent) -> None:
        with self._lock:
            handlers = self.handlers.copy()

        for handler in handlers:
            if not handler.handle_event(event):
                with self._lock:
                    self.stats.handler_errors += 1
