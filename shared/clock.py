"""
Clock abstraction for payload timestamps.

Every server-originated payload carries an ISO-8601 local date-time with no
offset. The service runs in UTC, so the default clock returns naive UTC
datetimes. Tests inject a FixedClock to get byte-identical payloads.
"""

import os
import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> datetime:  # pragma: no cover - Protocol
        ...


class UTCClock:
    """Wall clock in UTC, returned as a naive datetime."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Clock frozen at a given instant (for tests and demos)."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is not None:
            instant = instant.astimezone(timezone.utc).replace(tzinfo=None)
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


def format_local_datetime(value: datetime) -> str:
    """Format as ISO local date-time, e.g. ``2024-05-01T12:30:00``."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def set_utc_timezone() -> None:
    """Make UTC the process default timezone."""
    os.environ["TZ"] = "UTC"
    if hasattr(time, "tzset"):
        time.tzset()
