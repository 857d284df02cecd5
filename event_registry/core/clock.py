from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """FastAPI dependency; tests override it to pin "now"."""
    return utcnow
