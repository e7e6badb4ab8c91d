"""
Clock -- injectable time source.

Responsibility:
    Supplies every timestamp the workflow records: submission and status
    history entries, step approvals, payment, ledger entries and audit
    records.  Engines never read the wall clock; services receive a Clock
    through their constructor.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place the wall clock is
    read.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware "now" values."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a chosen instant.

    ``now()`` keeps returning the same value until ``advance()`` moves it,
    so tests can order submissions and assert exact timestamps.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move the clock forward and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
