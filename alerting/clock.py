"""
Time source used by the alerting engine.
"""

from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    """Base class for time sources."""

    @abstractmethod
    def now(self) -> datetime:
        """Current local time."""
        pass


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now()
