"""
Escalation scheduler.

Keeps a delay queue of per-level escalation tasks keyed by alert id. Tasks
are fired either by the background thread started with ``start()`` or by
calling ``run_pending()`` directly with an explicit time.
"""

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .clock import Clock, SystemClock
from .rules import EscalationLevel, EscalationPolicy
from utils.logging import get_enhanced_logger, LogCategory

logger = get_enhanced_logger(__name__, LogCategory.ESCALATION)

EscalationHandler = Callable[[str, int, EscalationLevel], None]


@dataclass(order=True)
class _ScheduledEscalation:
    """A pending escalation task."""
    deadline: datetime
    sequence: int
    alert_id: str = field(compare=False)
    level_index: int = field(compare=False)
    level: EscalationLevel = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


@dataclass
class FiredEscalation:
    """Record of an escalation task that came due."""
    alert_id: str
    level_index: int
    level: EscalationLevel
    deadline: datetime
    fired_at: datetime


class EscalationScheduler:
    """Schedules and cancels time-based escalation levels for alerts.

    ``arm`` queues one task per policy level at ``triggered_at +
    after_minutes``; ``disarm`` cancels every pending task of an alert. Due
    tasks are handed to the handler outside the scheduler lock, so a resolve
    racing a firing task is settled by the handler re-checking the alert.
    """

    def __init__(
        self,
        handler: Optional[EscalationHandler] = None,
        clock: Optional[Clock] = None,
        max_idle_seconds: float = 60.0
    ):
        self._handler = handler
        self._clock = clock or SystemClock()
        self.max_idle_seconds = max_idle_seconds

        self._queue: List[_ScheduledEscalation] = []
        self._armed: Dict[str, List[_ScheduledEscalation]] = {}
        self._sequence = itertools.count()

        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.stats = {
            'armed': 0,
            'fired': 0,
            'cancelled': 0,
            'dropped_past_deadline': 0,
            'handler_errors': 0
        }

    def set_handler(self, handler: EscalationHandler) -> None:
        self._handler = handler

    def arm(self, alert_id: str, triggered_at: datetime, policy: EscalationPolicy) -> int:
        """Schedule every level of the policy. Returns the number of tasks armed."""
        now = self._clock.now()
        armed = 0

        with self._wakeup:
            for index, level in enumerate(policy.levels):
                deadline = triggered_at + timedelta(minutes=level.after_minutes)
                if deadline < now:
                    # Deadline already passed; this level never fires
                    self.stats['dropped_past_deadline'] += 1
                    continue

                task = _ScheduledEscalation(
                    deadline=deadline,
                    sequence=next(self._sequence),
                    alert_id=alert_id,
                    level_index=index,
                    level=level
                )
                heapq.heappush(self._queue, task)
                self._armed.setdefault(alert_id, []).append(task)
                armed += 1

            self.stats['armed'] += armed
            self._wakeup.notify_all()

        if armed:
            logger.info("Escalation armed", alert_id=alert_id, levels=armed)
        return armed

    def disarm(self, alert_id: str) -> int:
        """Cancel all pending tasks for an alert. Safe to call repeatedly."""
        with self._wakeup:
            tasks = self._armed.pop(alert_id, [])
            for task in tasks:
                task.cancelled = True
            self.stats['cancelled'] += len(tasks)
            if tasks:
                self._wakeup.notify_all()

        if tasks:
            logger.info("Escalation disarmed", alert_id=alert_id, cancelled=len(tasks))
        return len(tasks)

    def run_pending(self, now: Optional[datetime] = None) -> List[FiredEscalation]:
        """Fire every task whose deadline has passed, in deadline order."""
        now = now or self._clock.now()
        due: List[_ScheduledEscalation] = []

        with self._lock:
            while self._queue and self._queue[0].deadline <= now:
                task = heapq.heappop(self._queue)
                if task.cancelled:
                    continue
                remaining = self._armed.get(task.alert_id)
                if remaining is not None:
                    remaining.remove(task)
                    if not remaining:
                        del self._armed[task.alert_id]
                due.append(task)
            self.stats['fired'] += len(due)

        fired = []
        for task in due:
            fired.append(FiredEscalation(
                alert_id=task.alert_id,
                level_index=task.level_index,
                level=task.level,
                deadline=task.deadline,
                fired_at=now
            ))
            if self._handler is None:
                continue
            try:
                self._handler(task.alert_id, task.level_index, task.level)
            except Exception as e:
                self.stats['handler_errors'] += 1
                logger.error(
                    "Escalation handler failed",
                    alert_id=task.alert_id,
                    escalation_index=task.level_index,
                    error=str(e)
                )

        return fired

    def pending_count(self, alert_id: Optional[str] = None) -> int:
        with self._lock:
            if alert_id is not None:
                return len(self._armed.get(alert_id, []))
            return sum(len(tasks) for tasks in self._armed.values())

    def next_deadline(self) -> Optional[datetime]:
        with self._lock:
            return self._next_deadline_locked()

    def start(self) -> None:
        """Start the background thread that fires due tasks."""
        if self._thread and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="AlertEscalation",
            daemon=True
        )
        self._thread.start()
        logger.info("Escalation scheduler started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread. Pending tasks stay queued."""
        self._stop_event.set()
        with self._wakeup:
            self._wakeup.notify_all()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error("Error in escalation loop", error=str(e))

            with self._wakeup:
                if self._stop_event.is_set():
                    break
                self._wakeup.wait(self._seconds_until_next_locked())

    def _next_deadline_locked(self) -> Optional[datetime]:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0].deadline if self._queue else None

    def _seconds_until_next_locked(self) -> float:
        deadline = self._next_deadline_locked()
        if deadline is None:
            return self.max_idle_seconds
        delay = (deadline - self._clock.now()).total_seconds()
        return min(max(delay, 0.0), self.max_idle_seconds)
