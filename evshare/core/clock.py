from datetime import datetime, timezone


class Clock:
    """Timestamp source for the engine. Tests swap in a fixed clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    def __init__(self, at: datetime):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, delta) -> datetime:
        self.at = self.at + delta
        return self.at
