"""
Time source for approval commands.

Engines never read the clock; they take ``now`` as an argument.  The
service asks its ``Clock`` once per command, so every ``approved_at``,
``rejected_at`` and history timestamp written by that command is the same
instant.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Injected into services. ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests; moves only when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = start or EPOCH

    def now(self) -> datetime:
        return self._now

    def set_time(self, when: datetime) -> None:
        self._now = when

    def advance(self, seconds: int = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now
