"""Wall clock adapter."""

from datetime import datetime, timezone


class SystemClock:
    """IClock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
