"""
Notification channels and the concurrent dispatcher.
"""

import smtplib
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from .events import AlertEvent, AlertEventBus, AlertEventType
from .exceptions import ConfigurationError, DeliveryError
from .models import Alert, AlertChannel, AlertSeverity
from utils.logging import clear_correlation_id, get_enhanced_logger, LogCategory, set_correlation_id

logger = get_enhanced_logger(__name__, LogCategory.NOTIFICATION)


DEFAULT_CHANNELS: Dict[AlertSeverity, List[AlertChannel]] = {
    AlertSeverity.CRITICAL: [AlertChannel.EMAIL, AlertChannel.SMS, AlertChannel.SLACK, AlertChannel.PAGERDUTY],
    AlertSeverity.HIGH: [AlertChannel.EMAIL, AlertChannel.SLACK],
    AlertSeverity.MEDIUM: [AlertChannel.SLACK],
    AlertSeverity.LOW: [AlertChannel.DASHBOARD],
}


def resolve_channels(
    severity: AlertSeverity,
    explicit: Optional[Iterable[AlertChannel]] = None
) -> List[AlertChannel]:
    """Channels to notify: the explicit list if given, else the severity default."""
    if explicit:
        return list(explicit)
    return list(DEFAULT_CHANNELS.get(severity, [AlertChannel.DASHBOARD]))


class DeliveryStatus(Enum):
    """Outcome of one channel delivery."""
    SENT = "sent"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class DeliveryResult:
    """Result of a single delivery attempt."""
    channel: AlertChannel
    status: DeliveryStatus
    alert_id: str
    error: Optional[str] = None
    duration_ms: float = 0.0
    recipients: List[str] = field(default_factory=list)
    delivered_at: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.SENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel.value,
            'status': self.status.value,
            'alert_id': self.alert_id,
            'error': self.error,
            'duration_ms': round(self.duration_ms, 2),
            'recipients': list(self.recipients),
            'delivered_at': self.delivered_at.isoformat()
        }


class AlertNotifier(ABC):
    """Base class for alert notifiers.

    ``send_alert`` returns on success and raises ``DeliveryError`` on failure.
    """

    channel: AlertChannel

    def __init__(self, enabled: bool = True, timeout: float = 10.0):
        self.enabled = enabled
        self.timeout = timeout

    def is_configured(self) -> bool:
        return True

    @abstractmethod
    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        """Send alert notification."""
        pass

    def get_channel_type(self) -> AlertChannel:
        """Get the channel type this notifier handles."""
        return self.channel

    def _check_response(self, response: requests.Response) -> None:
        if not response.ok:
            raise DeliveryError(
                self.channel.value,
                f"{self.channel.value} request failed with status {response.status_code}",
                status_code=response.status_code
            )


class EmailNotifier(AlertNotifier):
    """Email alert notifier."""

    channel = AlertChannel.EMAIL

    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = False,
        from_address: str = "alerts@itwhip.com",
        recipients: Optional[List[str]] = None,
        enabled: bool = True,
        timeout: float = 15.0
    ):
        super().__init__(enabled, timeout)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.from_address = from_address
        self.recipients = list(recipients or [])

    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.recipients)

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        """Send email alert."""
        recipients = recipients or self.recipients
        if not self.smtp_host:
            raise ConfigurationError(self.channel.value, "SMTP host")
        if not recipients:
            raise ConfigurationError(self.channel.value, "recipient list")

        msg = MIMEMultipart()
        msg['From'] = self.from_address
        msg['To'] = ', '.join(recipients)
        msg['Subject'] = f"[{alert.severity.value.upper()}] {alert.title}"
        msg.attach(MIMEText(self._format_body(alert), 'plain'))

        try:
            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)

            with server:
                if not self.use_ssl:
                    server.ehlo()
                    if server.has_extn('starttls'):
                        server.starttls()
                        server.ehlo()

                if self.username and self.password:
                    server.login(self.username, self.password)

                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.channel.value, f"SMTP delivery failed: {e}") from e

    def _format_body(self, alert: Alert) -> str:
        lines = [
            "Alert Details:",
            f"- Alert ID: {alert.alert_id}",
            f"- Severity: {alert.severity.value.upper()}",
            f"- Type: {alert.alert_type.value}",
            f"- Status: {alert.status.value}",
            f"- Triggered: {alert.triggered_at.isoformat()}",
            f"- Source: {alert.source or 'Unknown'}",
            "",
            "Message:",
            alert.message,
        ]
        if alert.escalation_level:
            lines += ["", f"Escalation level: {alert.escalation_level}"]
        return "\n".join(lines)


class SmsNotifier(AlertNotifier):
    """SMS alert notifier using the Twilio REST API."""

    channel = AlertChannel.SMS
    api_url = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
    max_length = 160

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        recipients: Optional[List[str]] = None,
        enabled: bool = True,
        timeout: float = 10.0
    ):
        super().__init__(enabled, timeout)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.recipients = list(recipients or [])

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number and self.recipients)

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        """Send one SMS per recipient; raises if any of them failed."""
        recipients = recipients or self.recipients
        if not (self.account_sid and self.auth_token and self.from_number):
            raise ConfigurationError(self.channel.value, "Twilio credentials")
        if not recipients:
            raise ConfigurationError(self.channel.value, "recipient list")

        body = f"[{alert.severity.value.upper()}] {alert.title} - {alert.message}"[:self.max_length]
        url = self.api_url.format(sid=self.account_sid)

        failed = []
        for number in recipients:
            try:
                response = requests.post(
                    url,
                    data={'To': number, 'From': self.from_number, 'Body': body},
                    auth=(self.account_sid, self.auth_token),
                    timeout=self.timeout
                )
                if not response.ok:
                    failed.append(f"{number} ({response.status_code})")
            except requests.RequestException as e:
                failed.append(f"{number} ({e})")

        if failed:
            raise DeliveryError(self.channel.value, f"SMS failed for {', '.join(failed)}")


class SlackNotifier(AlertNotifier):
    """Slack incoming-webhook notifier."""

    channel = AlertChannel.SLACK

    severity_colors = {
        AlertSeverity.CRITICAL: '#FF0000',
        AlertSeverity.HIGH: '#FF9900',
        AlertSeverity.MEDIUM: '#FFFF00',
        AlertSeverity.LOW: '#00FF00'
    }

    def __init__(
        self,
        webhook_url: Optional[str],
        slack_channel: Optional[str] = None,
        username: str = "ItWhip Alerts",
        enabled: bool = True,
        timeout: float = 10.0
    ):
        super().__init__(enabled, timeout)
        self.webhook_url = webhook_url
        self.slack_channel = slack_channel
        self.username = username

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        payload = {
            'username': self.username,
            'attachments': [{
                'color': self.severity_colors.get(alert.severity, '#808080'),
                'title': alert.title,
                'text': alert.message,
                'fields': [
                    {'title': 'Type', 'value': alert.alert_type.value, 'short': True},
                    {'title': 'Severity', 'value': alert.severity.value.upper(), 'short': True},
                    {'title': 'Time', 'value': alert.triggered_at.isoformat(), 'short': True},
                    {'title': 'Alert ID', 'value': alert.alert_id, 'short': True},
                ],
                'footer': 'ItWhip Alert System',
                'ts': int(alert.triggered_at.timestamp())
            }]
        }
        if self.slack_channel:
            payload['channel'] = self.slack_channel
        return payload

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        if not self.webhook_url:
            raise ConfigurationError(self.channel.value, "webhook URL")

        try:
            response = requests.post(self.webhook_url, json=self.build_payload(alert), timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryError(self.channel.value, f"Slack request failed: {e}") from e
        self._check_response(response)


class WebhookNotifier(AlertNotifier):
    """Generic JSON webhook notifier."""

    channel = AlertChannel.WEBHOOK

    def __init__(
        self,
        webhook_url: Optional[str],
        headers: Optional[Dict[str, str]] = None,
        enabled: bool = True,
        timeout: float = 10.0
    ):
        super().__init__(enabled, timeout)
        self.webhook_url = webhook_url
        self.headers = {'Content-Type': 'application/json', 'X-Alert-Source': 'ItWhip'}
        self.headers.update(headers or {})

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        """Send webhook alert."""
        if not self.webhook_url:
            raise ConfigurationError(self.channel.value, "webhook URL")

        payload = alert.to_dict()
        if recipients:
            payload['recipients'] = list(recipients)

        try:
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
                headers=self.headers
            )
        except requests.RequestException as e:
            raise DeliveryError(self.channel.value, f"Webhook request failed: {e}") from e
        self._check_response(response)


class PagerDutyNotifier(AlertNotifier):
    """PagerDuty Events API v2 notifier."""

    channel = AlertChannel.PAGERDUTY
    events_url = "https://events.pagerduty.com/v2/enqueue"

    severity_map = {
        AlertSeverity.CRITICAL: 'critical',
        AlertSeverity.HIGH: 'error',
        AlertSeverity.MEDIUM: 'warning',
        AlertSeverity.LOW: 'info'
    }

    def __init__(self, integration_key: Optional[str], enabled: bool = True, timeout: float = 10.0):
        super().__init__(enabled, timeout)
        self.integration_key = integration_key

    def is_configured(self) -> bool:
        return bool(self.integration_key)

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        return {
            'routing_key': self.integration_key,
            'event_action': 'trigger',
            'dedup_key': alert.alert_id,
            'payload': {
                'summary': alert.title,
                'severity': self.severity_map.get(alert.severity, 'warning'),
                'source': 'ItWhip',
                'component': alert.alert_type.value,
                'custom_details': {
                    'message': alert.message,
                    'details': alert.details,
                    'escalation_level': alert.escalation_level
                }
            }
        }

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        if not self.integration_key:
            raise ConfigurationError(self.channel.value, "integration key")

        try:
            response = requests.post(self.events_url, json=self.build_payload(alert), timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryError(self.channel.value, f"PagerDuty request failed: {e}") from e
        self._check_response(response)


class DashboardNotifier(AlertNotifier):
    """Publishes a dashboard event for in-process subscribers."""

    channel = AlertChannel.DASHBOARD

    def __init__(self, event_bus: AlertEventBus, enabled: bool = True, timeout: float = 5.0):
        super().__init__(enabled, timeout)
        self.event_bus = event_bus

    def send_alert(self, alert: Alert, recipients: Optional[List[str]] = None) -> None:
        self.event_bus.publish(AlertEvent(
            event_type=AlertEventType.DASHBOARD,
            alert=alert,
            data={'recipients': list(recipients or [])}
        ))


class _PendingDelivery:
    """A send submitted to the pool; its deadline starts when a worker picks it up."""

    def __init__(self, notifier: AlertNotifier, recipients: Optional[List[str]]):
        self.notifier = notifier
        self.recipients = recipients
        self.future = None
        self.started_at: Optional[float] = None
        self._started = threading.Event()

    def mark_started(self) -> None:
        self.started_at = time.monotonic()
        self._started.set()

    def wait_started(self, poll_seconds: float = 0.1) -> None:
        while not self._started.wait(poll_seconds):
            if self.future.done():
                return


class NotificationDispatcher:
    """Fans an alert out to its channels concurrently.

    Each channel runs on a shared thread pool and gets its own deadline,
    measured from the moment a worker starts the send. A send queued behind
    busy workers is never cancelled, so every requested channel is attempted.
    One channel failing, hanging or being misconfigured never affects the
    others, and ``dispatch`` never raises.
    """

    def __init__(
        self,
        notifiers: Optional[Iterable[AlertNotifier]] = None,
        max_workers: int = 8,
        grace_seconds: float = 1.0,
        max_log_size: int = 10000
    ):
        self.notifiers: Dict[AlertChannel, AlertNotifier] = {}
        self.grace_seconds = grace_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="AlertNotify")
        self._delivery_log: deque = deque(maxlen=max_log_size)
        self._lock = threading.Lock()

        for notifier in notifiers or []:
            self.add_notifier(notifier)

    def add_notifier(self, notifier: AlertNotifier) -> None:
        """Add a notification channel, replacing any existing one."""
        channel = notifier.get_channel_type()
        self.notifiers[channel] = notifier
        logger.info("Notifier added", channel=channel.value, enabled=notifier.enabled)

    def get_notifier(self, channel: AlertChannel) -> Optional[AlertNotifier]:
        return self.notifiers.get(channel)

    def dispatch(self, alert: Alert, channels: Iterable[AlertChannel]) -> Dict[AlertChannel, DeliveryResult]:
        """Deliver the alert on every requested channel and wait for all of them."""
        results: Dict[AlertChannel, DeliveryResult] = {}
        pending = []

        for channel in dict.fromkeys(channels):
            notifier = self.notifiers.get(channel)
            if notifier is None or not notifier.enabled:
                reason = "no notifier registered" if notifier is None else "channel disabled"
                results[channel] = self._record(DeliveryResult(
                    channel=channel,
                    status=DeliveryStatus.SKIPPED,
                    alert_id=alert.alert_id,
                    error=reason
                ))
                logger.debug("Channel skipped", channel=channel.value, alert_id=alert.alert_id, reason=reason)
                continue

            submitted = self._submit(notifier, alert, None)
            if isinstance(submitted, DeliveryResult):
                results[channel] = submitted
            else:
                pending.append((channel, submitted))

        for channel, delivery in pending:
            results[channel] = self._wait(channel, alert, delivery)

        return results

    def notify_users(self, alert: Alert, users: List[str]) -> DeliveryResult:
        """Email a specific set of users about an alert."""
        notifier = self.notifiers.get(AlertChannel.EMAIL)
        if not users or notifier is None or not notifier.enabled:
            reason = "no users" if not users else "email channel unavailable"
            logger.info("User notification skipped", alert_id=alert.alert_id, users=users, reason=reason)
            return self._record(DeliveryResult(
                channel=AlertChannel.EMAIL,
                status=DeliveryStatus.SKIPPED,
                alert_id=alert.alert_id,
                error=reason,
                recipients=list(users)
            ))

        submitted = self._submit(notifier, alert, list(users))
        if isinstance(submitted, DeliveryResult):
            return submitted
        return self._wait(AlertChannel.EMAIL, alert, submitted)

    def get_delivery_log(self, alert_id: Optional[str] = None) -> List[DeliveryResult]:
        with self._lock:
            log = list(self._delivery_log)
        if alert_id is not None:
            log = [r for r in log if r.alert_id == alert_id]
        return log

    def get_channel_stats(self) -> Dict[str, Dict[str, int]]:
        """Per-channel counts of each delivery outcome."""
        stats = {
            channel.value: {status.value: 0 for status in DeliveryStatus}
            for channel in AlertChannel
        }
        for result in self.get_delivery_log():
            stats[result.channel.value][result.status.value] += 1
        return stats

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("Notification dispatcher shut down")

    def _submit(self, notifier: AlertNotifier, alert: Alert, recipients: Optional[List[str]]):
        delivery = _PendingDelivery(notifier, recipients)
        try:
            delivery.future = self._executor.submit(self._deliver, delivery, alert)
        except RuntimeError as e:
            logger.error("Notification pool unavailable", channel=notifier.channel.value, error=str(e))
            return self._record(DeliveryResult(
                channel=notifier.channel,
                status=DeliveryStatus.FAILED,
                alert_id=alert.alert_id,
                error=str(e),
                recipients=list(recipients or [])
            ))
        return delivery

    def _wait(self, channel: AlertChannel, alert: Alert, delivery: _PendingDelivery) -> DeliveryResult:
        notifier = delivery.notifier
        # Queued sends wait for a free worker; only a started send can time out.
        delivery.wait_started()
        started_at = delivery.started_at or time.monotonic()
        deadline = started_at + notifier.timeout + self.grace_seconds

        try:
            return delivery.future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeoutError:
            logger.error(
                "Notification timed out",
                channel=channel.value,
                alert_id=alert.alert_id,
                timeout=notifier.timeout
            )
            return self._record(DeliveryResult(
                channel=channel,
                status=DeliveryStatus.TIMED_OUT,
                alert_id=alert.alert_id,
                error=f"no response within {notifier.timeout}s",
                duration_ms=notifier.timeout * 1000,
                recipients=list(delivery.recipients or [])
            ))

    def _deliver(self, delivery: _PendingDelivery, alert: Alert) -> DeliveryResult:
        """Runs on a pool thread; turns every outcome into a DeliveryResult."""
        delivery.mark_started()
        set_correlation_id(alert.alert_id)
        try:
            return self._attempt(delivery.notifier, alert, delivery.recipients)
        finally:
            clear_correlation_id()

    def _attempt(self, notifier: AlertNotifier, alert: Alert, recipients: Optional[List[str]]) -> DeliveryResult:
        channel = notifier.channel
        start = time.perf_counter()
        status = DeliveryStatus.SENT
        error = None

        try:
            notifier.send_alert(alert, recipients)
        except ConfigurationError as e:
            status, error = DeliveryStatus.FAILED, e.message
            logger.error("Notification channel misconfigured", channel=channel.value, alert_id=alert.alert_id, error=error)
        except DeliveryError as e:
            status, error = DeliveryStatus.FAILED, e.message
            logger.error(
                "Notification failed",
                channel=channel.value,
                alert_id=alert.alert_id,
                error=error,
                status_code=e.status_code
            )
        except Exception as e:
            status, error = DeliveryStatus.FAILED, str(e)
            logger.error(
                "Notification failed",
                channel=channel.value,
                alert_id=alert.alert_id,
                error=error,
                error_type=type(e).__name__
            )

        duration_ms = (time.perf_counter() - start) * 1000
        if status == DeliveryStatus.SENT:
            logger.info("Notification sent", channel=channel.value, alert_id=alert.alert_id, duration_ms=round(duration_ms, 2))

        return self._record(DeliveryResult(
            channel=channel,
            status=status,
            alert_id=alert.alert_id,
            error=error,
            duration_ms=duration_ms,
            recipients=list(recipients or [])
        ))

    def _record(self, result: DeliveryResult) -> DeliveryResult:
        with self._lock:
            self._delivery_log.append(result)
        return result


def build_notifiers(settings, event_bus: AlertEventBus) -> List[AlertNotifier]:
    """Build every channel notifier from settings."""
    config = settings.get_notification_config()
    email, sms, slack = config['email'], config['sms'], config['slack']
    webhook, pagerduty = config['webhook'], config['pagerduty']
    smtp = email['smtp'] or {}
    twilio = sms['twilio'] or {}

    return [
        EmailNotifier(
            smtp_host=smtp.get('host'),
            smtp_port=smtp.get('port', 587),
            username=smtp.get('user'),
            password=smtp.get('password'),
            use_ssl=smtp.get('secure', False),
            from_address=smtp.get('from', 'alerts@itwhip.com'),
            recipients=email['recipients'],
            enabled=email['enabled'],
            timeout=email['timeout']
        ),
        SmsNotifier(
            account_sid=twilio.get('account_sid'),
            auth_token=twilio.get('auth_token'),
            from_number=twilio.get('from_number'),
            recipients=sms['recipients'],
            enabled=sms['enabled'],
            timeout=sms['timeout']
        ),
        SlackNotifier(
            webhook_url=slack['webhook_url'],
            slack_channel=slack['channel'],
            username=slack['username'],
            enabled=slack['enabled'],
            timeout=slack['timeout']
        ),
        WebhookNotifier(
            webhook_url=webhook['url'],
            enabled=webhook['enabled'],
            timeout=webhook['timeout']
        ),
        PagerDutyNotifier(
            integration_key=pagerduty['integration_key'],
            enabled=pagerduty['enabled'],
            timeout=pagerduty['timeout']
        ),
        DashboardNotifier(event_bus),
    ]
