"""
Per-rule cooldown tracking.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from .clock import Clock, SystemClock
from utils.logging import get_logger

logger = get_logger(__name__)


class CooldownTracker:
    """Suppresses re-triggering of a rule until its cooldown expires.

    Entries are keyed by rule id and hold the expiry instant. They are
    refreshed each time the rule fires and never cleared; they just expire.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._expiries: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def is_active(self, rule_id: str, now: Optional[datetime] = None) -> bool:
        """True while the rule is still suppressed."""
        now = now or self._clock.now()
        with self._lock:
            expiry = self._expiries.get(rule_id)
        return expiry is not None and now < expiry

    def expires_at(self, rule_id: str) -> Optional[datetime]:
        with self._lock:
            return self._expiries.get(rule_id)

    def refresh(self, rule_id: str, cooldown_minutes: float, now: Optional[datetime] = None) -> datetime:
        """Set the rule's cooldown to now + cooldown_minutes."""
        now = now or self._clock.now()
        expiry = now + timedelta(minutes=cooldown_minutes)
        with self._lock:
            self._expiries[rule_id] = expiry
        return expiry

    def try_acquire(self, rule_id: str, cooldown_minutes: float, now: Optional[datetime] = None) -> bool:
        """Atomically check the cooldown and, if expired, start a new one.

        Returns False when another caller fired the rule first.
        """
        now = now or self._clock.now()
        with self._lock:
            expiry = self._expiries.get(rule_id)
            if expiry is not None and now < expiry:
                logger.debug(f"Rule {rule_id} still cooling down until {expiry.isoformat()}")
                return False
            self._expiries[rule_id] = now + timedelta(minutes=cooldown_minutes)
            return True

    def snapshot(self) -> Dict[str, datetime]:
        """Copy of all cooldown entries."""
        with self._lock:
            return dict(self._expiries)
