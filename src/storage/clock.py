"""
Clock capability and timestamp encoding.

Every timestamp the service writes or hands out comes from a Clock
passed in by the caller, so tests can run against a deterministic one.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Union

TIMESTAMP_RESOLUTION = timedelta(microseconds=1)


class InvalidTimestampError(ValueError):
    """Raised when a timestamp string cannot be parsed."""
    pass


class Clock(Protocol):
    """Source of the current time (timezone-aware, UTC)."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """
    Wall clock with a monotonic tie-break.

    Two calls never return the same instant: when the wall clock has not
    moved (or went backwards) the previous value is bumped by one
    microsecond instead.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + TIMESTAMP_RESOLUTION
            self._last = current
            return current


class ManualClock:
    """
    Deterministic clock for tests.

    Each call to now() returns the current value and then moves it
    forward by `step`, so consecutive readings are strictly increasing.

    Usage:
        clock = ManualClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.now()
        clock.advance(seconds=5)
    """

    def __init__(
        self,
        start: Optional[datetime] = None,
        step: timedelta = timedelta(milliseconds=1),
    ):
        if start is None:
            start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._current = to_utc(start)
        self._step = step
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            value = self._current
            self._current = self._current + self._step
            return value

    def peek(self) -> datetime:
        """Return the value the next now() call will produce."""
        return self._current

    def advance(self, **kwargs) -> None:
        """Move the clock forward by a timedelta built from kwargs."""
        with self._lock:
            self._current = self._current + timedelta(**kwargs)

    def set(self, value: datetime) -> None:
        with self._lock:
            self._current = to_utc(value)


def to_utc(value: datetime) -> datetime:
    """Normalise a datetime to UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Encode a datetime as fixed-width UTC ISO-8601.

    Fixed width keeps stored strings ordered the same way as the
    instants they encode, which the SQLite queries rely on.
    """
    value = to_utc(value)
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
        f".{value.microsecond:06d}Z"
    )



def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z" or an explicit offset. Naive values are
    taken as UTC.

    Raises:
        InvalidTimestampError: If the value is empty or malformed
    """
    if isinstance(value, datetime):
        return to_utc(value)

    if not isinstance(value, str) or not value.strip():
        raise InvalidTimestampError(f"Timestamp is required, got {value!r}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidTimestampError(f"Invalid ISO-8601 timestamp: {value!r}") from e

    return to_utc(parsed)
