"""
Controllable clock for verification tests.
"""
from datetime import datetime, timedelta, timezone


class FakeClock:
    """Callable clock; time only moves when a test advances it."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now
