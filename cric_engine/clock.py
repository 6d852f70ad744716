"""
Clock abstractions for deterministic behavior.

Notes
-----
Engine code does not read wall-clock time directly. Callers provide a Clock so
that last-run timestamps and backup log tags are reproducible in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

BACKUP_TAG_FORMAT = "%Y%m%d_%H%M%S"


class Clock(Protocol):
    """A source of time."""

    def now(self) -> datetime:
        """
        Return the current time.

        Returns
        -------
        datetime
            A timezone-aware datetime.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock that returns the current system time in UTC."""

    def now(self) -> datetime:
        """Return the current system time as an aware UTC datetime."""
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock that always returns a fixed time (useful for tests)."""

    fixed_time: datetime

    def now(self) -> datetime:
        """Return the fixed time, assuming UTC when it is naive."""
        if self.fixed_time.tzinfo is None:
            return self.fixed_time.replace(tzinfo=timezone.utc)
        return self.fixed_time


def epoch_millis(clock: Clock) -> int:
    """
    Return the clock's current time as milliseconds since the Unix epoch.

    Parameters
    ----------
    clock:
        Time source.

    Returns
    -------
    int
        Epoch milliseconds, the unit used for ``last_run``.
    """
    return int(clock.now().timestamp() * 1000)


def backup_tag(clock: Clock) -> str:
    """Return the ``yyyyMMdd_HHmmss`` local-time tag used by the backup log."""
    return clock.now().astimezone().strftime(BACKUP_TAG_FORMAT)
