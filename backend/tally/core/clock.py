"""Clock: the current instant as an injectable dependency.

Due-soon and upcoming classification depend on "now". Routers receive a
Clock through FastAPI dependency injection so tests can pin time.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def fixed_clock(moment: datetime) -> Clock:
    """Return a clock that always reports ``moment`` (as UTC)."""
    pinned = to_utc(moment)
    return lambda: pinned


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
