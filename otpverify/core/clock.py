"""
Time helpers shared by the verification engine and its stores.

All timestamps are timezone-aware UTC datetimes. Components take a clock
callable so tests can move time without sleeping.
"""
import math
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until(moment: Optional[datetime], now: datetime) -> int:
    """
    Whole seconds from now until moment, rounded up, never negative.

    Rounding up keeps countdowns from showing 0 while the deadline is still
    in the future.
    """
    if moment is None:
        return 0
    delta = (moment - now).total_seconds()
    if delta <= 0:
        return 0
    return int(math.ceil(delta))


def to_epoch(moment: datetime) -> float:
    return moment.timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp written by isoformat(), assuming UTC if naive."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
